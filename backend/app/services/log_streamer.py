"""Live log streaming sessions and static log tails."""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Dict, List, Optional

from app.config import Settings
from app.exceptions import ContainerNotFoundError, DockPulseError
from app.services import metrics as prom
from app.services.runtime_client import LogFollow, RuntimeClient
from app.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

CONNECTING = "connecting"
STREAMING = "streaming"
CLOSED = "closed"

REASON_DISCONNECTED = "disconnected"
REASON_NOT_FOUND = "not_found"
REASON_STREAM_ENDED = "stream_ended"
REASON_ERROR = "error"

_CLOSED = object()


class LogSink(ABC):
    """Destination of a session's log lines (one viewer connection)."""

    @abstractmethod
    async def send(self, line: str) -> None:
        """Deliver one line; may block to apply backpressure."""

    @abstractmethod
    async def close(self, error: Optional[DockPulseError] = None) -> None:
        """Signal the end of the stream, with the error that ended it if any."""


class QueueLogSink(LogSink):
    """Sink backed by a one-slot queue.

    ``send`` blocks while the previous line has not been received, so a slow
    reader slows the runtime follow down instead of growing a buffer.
    """

    def __init__(self, maxsize: int = 1) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.error: Optional[DockPulseError] = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, line: str) -> None:
        if self._closed:
            return
        await self._queue.put(line)

    async def close(self, error: Optional[DockPulseError] = None) -> None:
        if self._closed:
            return
        self._closed = True
        self.error = error
        # A full queue still holds a line; receive() sees the flag once it is drained
        if self._queue.empty():
            self._queue.put_nowait(_CLOSED)

    async def receive(self) -> Optional[str]:
        """Next line, or None once the sink is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item


class LogSession:
    """One viewer's subscription: connecting -> streaming -> closed.

    Closed is terminal. Entering it always releases the runtime follow handle
    and closes the sink.
    """

    def __init__(self, container_id: str, tail_lines: int, sink: LogSink) -> None:
        self.id = uuid.uuid4().hex
        self.container_id = container_id
        self.tail_lines = tail_lines
        self.sink = sink
        self.state = CONNECTING
        self.close_reason: Optional[str] = None
        self.error: Optional[DockPulseError] = None
        self.lines_sent = 0
        self.opened_at = datetime.now(UTC)
        self.follow: Optional[LogFollow] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self.state == CLOSED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "container_id": self.container_id,
            "tail_lines": self.tail_lines,
            "state": self.state,
            "close_reason": self.close_reason,
            "lines_sent": self.lines_sent,
            "opened_at": self.opened_at.isoformat(),
        }


class LogStreamer:
    """Manages live log sessions and serves static tails."""

    def __init__(self, runtime: RuntimeClient, settings: Settings) -> None:
        self.runtime = runtime
        self.settings = settings
        self._sessions: Dict[str, LogSession] = {}

    def clamp_tail(self, tail_lines: Optional[int]) -> int:
        if tail_lines is None:
            tail_lines = self.settings.log_tail_default
        return min(max(int(tail_lines), 1), self.settings.log_tail_max)

    async def subscribe(
        self, container_id: str, tail_lines: Optional[int], sink: LogSink
    ) -> LogSession:
        """Open a session relaying ``container_id``'s logs into ``sink``.

        Returns immediately; the session connects in its own task. Failures
        are delivered to the sink, never raised here.
        """
        session = LogSession(container_id, self.clamp_tail(tail_lines), sink)
        self._sessions[session.id] = session
        prom.log_streams_active.inc()
        session.task = asyncio.create_task(
            self._run(session), name=f"log-session-{session.id[:8]}"
        )
        logger.info(
            f"Log session {session.id[:8]} opened for "
            f"{sanitize_log_message(container_id)} (tail={session.tail_lines})"
        )
        return session

    async def unsubscribe(self, session_id: str) -> bool:
        """Cancel a session and wait until it is closed.

        Returns:
            False if no such session is open
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False
        if session.task is not None and not session.task.done():
            session.task.cancel()
            await asyncio.wait([session.task])
        # A task cancelled before its first step never runs its cleanup
        await self._finish(session, REASON_DISCONNECTED)
        return True

    def active_sessions(self) -> List[LogSession]:
        return [s for s in self._sessions.values() if not s.closed]

    def get_session(self, session_id: str) -> Optional[LogSession]:
        return self._sessions.get(session_id)

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.unsubscribe(session_id)

    async def tail(self, container_id: str, lines: Optional[int] = None) -> str:
        """Return the last ``lines`` log lines as one blob.

        Independent of any live session.

        Raises:
            ContainerNotFoundError: Unknown container
        """
        return await self.runtime.logs(container_id, self.clamp_tail(lines))

    async def _run(self, session: LogSession) -> None:
        reason = REASON_STREAM_ENDED
        error: Optional[DockPulseError] = None
        try:
            await self.runtime.inspect(session.container_id)
            session.follow = await self.runtime.follow_logs(
                session.container_id, session.tail_lines
            )
            session.state = STREAMING

            async for line in session.follow:
                await session.sink.send(line)
                session.lines_sent += 1

            # The runtime ended the stream; tell removal apart from a plain stop
            try:
                await self.runtime.inspect(session.container_id)
            except ContainerNotFoundError as e:
                reason, error = REASON_NOT_FOUND, e
        except asyncio.CancelledError:
            reason = REASON_DISCONNECTED
            raise
        except ContainerNotFoundError as e:
            reason, error = REASON_NOT_FOUND, e
        except DockPulseError as e:
            reason, error = REASON_ERROR, e
            logger.warning(
                f"Log session {session.id[:8]} for "
                f"{sanitize_log_message(session.container_id)} failed: {e}"
            )
        finally:
            await self._finish(session, reason, error)

    async def _finish(
        self, session: LogSession, reason: str, error: Optional[DockPulseError] = None
    ) -> None:
        if session.closed:
            return
        session.state = CLOSED
        session.close_reason = reason
        session.error = error
        self._sessions.pop(session.id, None)
        prom.log_streams_active.dec()
        try:
            if session.follow is not None:
                await session.follow.aclose()
        finally:
            await session.sink.close(error)
        logger.info(
            f"Log session {session.id[:8]} closed ({reason}) after {session.lines_sent} lines"
        )
