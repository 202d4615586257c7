"""Sign-in error taxonomy.

Every failure the engine can report maps to exactly one ``ErrorKind`` and one
HTTP status code. Routers never build error bodies by hand: they let these
exceptions propagate to the handler installed in ``portcullis.api.app``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar

from fastapi import status


class ErrorKind(str, Enum):
    INVALID_REQUEST = "InvalidRequest"
    INVALID_CREDENTIALS = "InvalidCredentials"
    INVALID_OR_EXPIRED_CODE = "InvalidOrExpiredCode"
    INVALID_PHONE_NUMBER = "InvalidPhoneNumber"
    VERIFICATION_FAILED = "VerificationFailed"
    TOO_MANY_ATTEMPTS = "TooManyAttempts"
    STATE_MISMATCH = "StateMismatch"
    IDENTITY_PROVIDER_ERROR = "IdentityProviderError"
    SIGN_UP_NOT_ALLOWED = "SignUpNotAllowed"
    ALREADY_LINKED_ELSEWHERE = "AlreadyLinkedElsewhere"
    TAG_NOT_ALLOWED = "TagNotAllowed"
    USER_FORBIDDEN = "UserForbidden"
    USER_NOT_FOUND = "UserNotFound"
    SUBSCRIPTION_REQUIRED = "SubscriptionRequired"
    MFA_VERIFICATION_FAILED = "MfaVerificationFailed"
    PROVISIONING_FAILED = "ProvisioningFailed"
    UNSUPPORTED_RESPONSE_TYPE = "UnsupportedResponseType"
    GRANT_TYPE_NOT_ALLOWED = "GrantTypeNotAllowed"
    INVALID_CLIENT = "InvalidClient"
    INVALID_GRANT = "InvalidGrant"
    INVALID_SAML_REQUEST = "InvalidSamlRequest"
    APPLICATION_NOT_FOUND = "ApplicationNotFound"
    PROVIDER_NOT_FOUND = "ProviderNotFound"
    PROVIDER_NOT_ENABLED = "ProviderNotEnabled"
    SIGN_OUT_REQUIRED = "SignOutRequired"
    SESSION_REQUIRED = "SessionRequired"


class SigninError(Exception):
    """Base class for every caller-visible sign-in failure."""

    kind: ClassVar[ErrorKind] = ErrorKind.INVALID_REQUEST
    status_code: ClassVar[int] = status.HTTP_400_BAD_REQUEST
    default_message: ClassVar[str] = "Invalid request"

    def __init__(self, message: str | None = None, *, data: Any = None) -> None:
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "error",
            "kind": self.kind.value,
            "msg": self.message,
            "data": self.data,
        }


class InvalidRequest(SigninError):
    kind = ErrorKind.INVALID_REQUEST


class InvalidCredentials(SigninError):
    kind = ErrorKind.INVALID_CREDENTIALS
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid username or password"


class InvalidOrExpiredCode(SigninError):
    kind = ErrorKind.INVALID_OR_EXPIRED_CODE
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Verification code is invalid or expired"


class InvalidPhoneNumber(SigninError):
    kind = ErrorKind.INVALID_PHONE_NUMBER
    default_message = "Phone number is invalid in your region"


class VerificationFailed(SigninError):
    kind = ErrorKind.VERIFICATION_FAILED
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Turing test failed"


class TooManyAttempts(SigninError):
    kind = ErrorKind.TOO_MANY_ATTEMPTS
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many failed attempts, please wait before retrying"


class StateMismatch(SigninError):
    kind = ErrorKind.STATE_MISMATCH
    default_message = "OAuth state mismatch"


class IdentityProviderError(SigninError):
    kind = ErrorKind.IDENTITY_PROVIDER_ERROR
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Identity provider error"


class SignUpNotAllowed(SigninError):
    kind = ErrorKind.SIGN_UP_NOT_ALLOWED
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Sign up is not allowed"


class AlreadyLinkedElsewhere(SigninError):
    kind = ErrorKind.ALREADY_LINKED_ELSEWHERE
    status_code = status.HTTP_409_CONFLICT
    default_message = "The external account is already linked to another user"


class TagNotAllowed(SigninError):
    kind = ErrorKind.TAG_NOT_ALLOWED
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "User tag is not allowed for this application"


class UserForbidden(SigninError):
    kind = ErrorKind.USER_FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "The user is forbidden to sign in, please contact the administrator"


class UserNotFound(SigninError):
    kind = ErrorKind.USER_NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "User does not exist"


class SubscriptionRequired(SigninError):
    kind = ErrorKind.SUBSCRIPTION_REQUIRED
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "An active subscription is required"


class MfaVerificationFailed(SigninError):
    kind = ErrorKind.MFA_VERIFICATION_FAILED
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Multi-factor verification failed"


class ProvisioningFailed(SigninError):
    kind = ErrorKind.PROVISIONING_FAILED
    status_code = status.HTTP_409_CONFLICT
    default_message = "Failed to create user, user information is invalid"


class UnsupportedResponseType(SigninError):
    kind = ErrorKind.UNSUPPORTED_RESPONSE_TYPE
    default_message = "Unsupported response type"


class GrantTypeNotAllowed(SigninError):
    kind = ErrorKind.GRANT_TYPE_NOT_ALLOWED
    default_message = "Grant type is not supported in this application"


class InvalidClient(SigninError):
    kind = ErrorKind.INVALID_CLIENT
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid client"


class InvalidGrant(SigninError):
    kind = ErrorKind.INVALID_GRANT
    default_message = "Invalid grant"


class InvalidSamlRequest(SigninError):
    kind = ErrorKind.INVALID_SAML_REQUEST
    default_message = "Invalid SAML request"


class ApplicationNotFound(SigninError):
    kind = ErrorKind.APPLICATION_NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Application does not exist"


class ProviderNotFound(SigninError):
    kind = ErrorKind.PROVIDER_NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Provider does not exist"


class ProviderNotEnabled(SigninError):
    kind = ErrorKind.PROVIDER_NOT_ENABLED
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Provider is not enabled for the application"


class SignOutRequired(SigninError):
    kind = ErrorKind.SIGN_OUT_REQUIRED
    status_code = status.HTTP_409_CONFLICT
    default_message = "Please sign out first"


class SessionRequired(SigninError):
    kind = ErrorKind.SESSION_REQUIRED
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "A signed-in session is required"
