"""Fire-and-forget recording of completed sign-ins.

Runs as a single asyncio worker in the app lifespan. ``submit`` never blocks
the caller and a recording failure is logged, never raised. Tests call
``drain()`` to wait until everything submitted so far has been written.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portcullis.core.config import get_settings
from portcullis.core.database import get_session_factory
from portcullis.core.logging import get_logger
from portcullis.models.record import Record
from portcullis.models.session import LoginSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class SigninEvent:
    organization: str
    user: str
    application: str
    session_id: str | None = None
    action: str = "login"
    client_ip: str | None = None
    record_session: bool = True


class SessionRecorder:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        maxsize: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._queue: asyncio.Queue[SigninEvent] = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else get_settings().audit_queue_size
        )
        self._worker: asyncio.Task | None = None

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="signin-recorder")

    async def stop(self) -> None:
        """Flush pending events, then cancel the worker."""
        if self._worker is None:
            return
        if self.running:
            await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    def submit(self, event: SigninEvent) -> bool:
        """Queue *event* without waiting. Returns False when it had to be dropped."""
        self.start()
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Sign-in record dropped, queue full",
                user=f"{event.organization}/{event.user}",
                action=event.action,
            )
            return False
        return True

    async def drain(self) -> None:
        await self._queue.join()

    async def _run(self) -> None:
        logger.info("Sign-in recorder started")
        while True:
            event = await self._queue.get()
            try:
                await self._write(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Failed to record sign-in",
                    user=f"{event.organization}/{event.user}",
                    action=event.action,
                )
            finally:
                self._queue.task_done()

    async def _write(self, event: SigninEvent) -> None:
        async with self.session_factory() as session:
            if event.record_session:
                session.add(
                    LoginSession(
                        organization=event.organization,
                        user=event.user,
                        application=event.application,
                        session_id=event.session_id,
                    )
                )
            session.add(
                Record(
                    organization=event.organization,
                    user=event.user,
                    action=event.action,
                    application=event.application,
                    client_ip=event.client_ip,
                )
            )
            await session.commit()
