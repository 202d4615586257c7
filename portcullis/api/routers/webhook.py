"""Webhook router: QR-scan events from a messaging platform, polled per ticket."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from lxml import etree

from portcullis.api.dependencies import get_webhook_store
from portcullis.core.config import get_settings
from portcullis.core.errors import InvalidRequest
from portcullis.core.logging import get_logger
from portcullis.idp.saml import XML_PARSER
from portcullis.schemas.auth import WebhookEvent, WebhookTicket
from portcullis.signin.webhook import ScanEventStore

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["webhook"])

StoreDep = Annotated[ScanEventStore, Depends(get_webhook_store)]

SCAN_EVENTS = frozenset({"SCAN", "subscribe"})


@router.post("/webhook-ticket", response_model=WebhookTicket)
async def issue_webhook_ticket(store: StoreDep) -> WebhookTicket:
    ticket = await store.issue_ticket()
    return WebhookTicket(ticket=ticket, expires_in=get_settings().webhook_event_ttl_seconds)


@router.post("/webhook", response_class=PlainTextResponse)
async def webhook(request: Request, store: StoreDep) -> str:
    body = await request.body()
    try:
        root = etree.fromstring(body, parser=XML_PARSER)
    except etree.XMLSyntaxError as exc:
        raise InvalidRequest("Webhook body is not valid XML") from exc

    msg_type = root.findtext("MsgType", default="")
    event = root.findtext("Event", default="")
    event_key = root.findtext("EventKey", default="")
    if msg_type != "event" or event not in SCAN_EVENTS or not event_key:
        return ""
    if await store.publish(event_key, event):
        logger.info("Scan event received", scan_event=event)
    return "success"


@router.get("/get-webhook-event", response_model=WebhookEvent)
async def get_webhook_event(store: StoreDep, ticket: str) -> WebhookEvent:
    return WebhookEvent(ticket=ticket, event=await store.take(ticket))
