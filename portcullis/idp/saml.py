"""SAML 2.0 identity provider (HTTP-POST binding, XML-DSig signed assertions).

The whole ``<Assertion>`` carries an enveloped RSA-SHA256 signature checked
against the provider's X.509 ``certificate``. Subject, attributes and conditions
are read from the verified element only. The NameID may be a username, an email
address, a phone number or an opaque id; callers must not assume its shape.
"""

from __future__ import annotations

import base64
import binascii
import secrets
import zlib
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from lxml import etree
from signxml import (
    CanonicalizationMethod,
    DigestAlgorithm,
    SignatureMethod,
    XMLSigner,
    XMLVerifier,
    methods,
)
from signxml.exceptions import InvalidInput, InvalidSignature

from portcullis.core.errors import IdentityProviderError
from portcullis.core.logging import get_logger
from portcullis.idp.base import AssertionIdProvider, ProviderCategory, ProviderMetadata, UserInfo

logger = get_logger(__name__)

SAML_NS = {
    "ds": "http://www.w3.org/2000/09/xmldsig#",
    "saml2": "urn:oasis:names:tc:SAML:2.0:assertion",
    "saml2p": "urn:oasis:names:tc:SAML:2.0:protocol",
}
ASSERTION_TAG = f"{{{SAML_NS['saml2']}}}Assertion"
CLOCK_SKEW = timedelta(seconds=60)

# No DTD entity expansion, no network fetches
XML_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)

# Attribute names understood without an explicit mapping
_DEFAULT_ATTRIBUTES = {
    "username": "username",
    "email": "email",
    "phone": "phone",
    "displayName": "display_name",
    "avatar": "avatar_url",
}


def sign_assertion(assertion: etree._Element, key_pem: str, cert_pem: str) -> etree._Element:
    """Return a copy of *assertion* with an enveloped signature over the whole element."""
    signer = XMLSigner(
        method=methods.enveloped,
        signature_algorithm=SignatureMethod.RSA_SHA256,
        digest_algorithm=DigestAlgorithm.SHA256,
        c14n_algorithm=CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0,
    )
    return signer.sign(assertion, key=key_pem, cert=cert_pem)


def verify_assertion(document: bytes, cert_pem: str) -> etree._Element:
    """Verify the assertion inside *document* and return the signed element."""
    try:
        root = etree.fromstring(document, parser=XML_PARSER)
    except etree.XMLSyntaxError as exc:
        raise IdentityProviderError("Malformed SAML response") from exc
    assertions = [root] if root.tag == ASSERTION_TAG else root.findall(".//saml2:Assertion", SAML_NS)
    if len(assertions) != 1:
        raise IdentityProviderError("SAML response must carry exactly one assertion")
    if assertions[0].find("ds:Signature", SAML_NS) is None:
        raise IdentityProviderError("SAML assertion is not signed")
    try:
        result = XMLVerifier().verify(
            etree.tostring(assertions[0]), x509_cert=cert_pem, expect_references=1
        )
    except (InvalidSignature, InvalidInput) as exc:
        logger.info("SAML signature rejected", reason=str(exc))
        raise IdentityProviderError("SAML signature mismatch") from exc
    signed = result.signed_xml
    if signed is None or signed.tag != ASSERTION_TAG:
        raise IdentityProviderError("SAML signature does not cover the assertion")
    return signed


def _parse_instant(value: str) -> datetime:
    try:
        instant = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise IdentityProviderError("Invalid SAML timestamp") from exc
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


class SamlIdProvider(AssertionIdProvider):
    metadata = ProviderMetadata(
        type="SAML",
        display_name="SAML 2.0",
        category=ProviderCategory.SAML,
        description="SAML 2.0 IdP posting XML-DSig signed assertions.",
        category_default=True,
    )

    async def parse_assertion(self, raw: str) -> UserInfo:
        if not self.provider.certificate:
            raise IdentityProviderError(f"Provider {self.provider.name} has no signing certificate")
        try:
            document = base64.b64decode(raw, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise IdentityProviderError("Malformed SAML response") from exc

        assertion = verify_assertion(document, self.provider.certificate)

        subject = assertion.findtext("saml2:Subject/saml2:NameID", namespaces=SAML_NS)
        if not subject or not subject.strip():
            raise IdentityProviderError("SAML assertion has no subject")
        subject = subject.strip()

        self._check_conditions(assertion)

        attributes: dict[str, str] = {}
        mapping = {**_DEFAULT_ATTRIBUTES, **(self.provider.attribute_mapping or {})}
        for attribute in assertion.findall(
            "saml2:AttributeStatement/saml2:Attribute", namespaces=SAML_NS
        ):
            name = attribute.get("Name")
            value = attribute.findtext("saml2:AttributeValue", namespaces=SAML_NS)
            if name and value and name in mapping:
                attributes[mapping[name]] = value

        return UserInfo(
            id=subject,
            username=attributes.get("username") or subject,
            display_name=attributes.get("display_name", ""),
            email=attributes.get("email", ""),
            phone=attributes.get("phone", ""),
            avatar_url=attributes.get("avatar_url", ""),
            extra={"attributes": attributes},
        )

    def _check_conditions(self, assertion: etree._Element) -> None:
        now = datetime.now(timezone.utc)
        conditions = assertion.find("saml2:Conditions", namespaces=SAML_NS)
        if conditions is None or not conditions.get("NotOnOrAfter"):
            raise IdentityProviderError("SAML assertion has no validity window")
        not_before = conditions.get("NotBefore")
        if not_before and now + CLOCK_SKEW < _parse_instant(not_before):
            raise IdentityProviderError("SAML assertion is not yet valid")
        if now - CLOCK_SKEW >= _parse_instant(conditions.get("NotOnOrAfter")):
            raise IdentityProviderError("SAML assertion has expired")

        if self.provider.audience:
            audiences = {
                (node.text or "").strip()
                for node in conditions.findall(
                    "saml2:AudienceRestriction/saml2:Audience", namespaces=SAML_NS
                )
            }
            if self.provider.audience not in audiences:
                raise IdentityProviderError("SAML audience mismatch")

    def build_authn_request(self, relay_state: str) -> str:
        """Return the IdP redirect URL carrying a deflated AuthnRequest."""
        if not self.provider.endpoint:
            raise IdentityProviderError(f"Provider {self.provider.name} has no SSO endpoint")
        request = etree.Element(
            f"{{{SAML_NS['saml2p']}}}AuthnRequest",
            {
                "ID": f"_{secrets.token_hex(16)}",
                "Version": "2.0",
                "IssueInstant": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
                "AssertionConsumerServiceURL": self.redirect_uri,
                "ProtocolBinding": "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST",
            },
            nsmap={"saml2p": SAML_NS["saml2p"], "saml2": SAML_NS["saml2"]},
        )
        issuer = etree.SubElement(request, f"{{{SAML_NS['saml2']}}}Issuer")
        issuer.text = self.provider.client_id or self.redirect_uri
        compressor = zlib.compressobj(wbits=-15)
        deflated = compressor.compress(etree.tostring(request)) + compressor.flush()
        query = urlencode(
            {"SAMLRequest": base64.b64encode(deflated).decode(), "RelayState": relay_state}
        )
        separator = "&" if "?" in self.provider.endpoint else "?"
        return f"{self.provider.endpoint}{separator}{query}"
