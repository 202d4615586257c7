"""Scan events pushed by a messaging-platform webhook, keyed per polling client.

A polling client first obtains a ticket (correlation id), embeds it in the
QR code it shows, then polls ``take(ticket)``. Events for other tickets are
never visible to it.
"""

from __future__ import annotations

import asyncio
import secrets
import time

from portcullis.core.logging import get_logger

logger = get_logger(__name__)

SCENE_PREFIX = "qrscene_"


class ScanEventStore:
    def __init__(self, ttl_seconds: float) -> None:
        self.ttl = ttl_seconds
        self._tickets: dict[str, tuple[float, str | None]] = {}
        self._lock = asyncio.Lock()

    def _purge(self, now: float) -> None:
        expired = [t for t, (deadline, _) in self._tickets.items() if deadline <= now]
        for ticket in expired:
            del self._tickets[ticket]

    async def issue_ticket(self) -> str:
        ticket = secrets.token_urlsafe(16)
        async with self._lock:
            now = time.monotonic()
            self._purge(now)
            self._tickets[ticket] = (now + self.ttl, None)
        return ticket

    async def publish(self, ticket: str, event: str) -> bool:
        """Attach *event* to *ticket*. Returns False for an unknown or expired ticket."""
        if ticket.startswith(SCENE_PREFIX):
            ticket = ticket[len(SCENE_PREFIX):]
        async with self._lock:
            self._purge(time.monotonic())
            entry = self._tickets.get(ticket)
            if entry is None:
                logger.debug("Webhook event for unknown ticket dropped")
                return False
            self._tickets[ticket] = (entry[0], event)
        return True

    async def take(self, ticket: str) -> str | None:
        """Return and clear the event for *ticket*, or None while nothing arrived."""
        async with self._lock:
            self._purge(time.monotonic())
            entry = self._tickets.get(ticket)
            if entry is None or entry[1] is None:
                return None
            del self._tickets[ticket]
            return entry[1]
