"""Session manager for the relay server.

Holds every live SessionBridge keyed by session id. One instance lives on
``app.state.session_manager`` and is handed explicitly to route handlers.
"""

import asyncio
import logging
from typing import Any

from .process_supervisor import ProcessSupervisor
from .session import EventSender, Session, SessionBridge

logger = logging.getLogger(__name__)


class SessionManager:
    """Manages sessions for all connected viewers.

    Creates sessions on connect and guarantees their kernels are
    terminated when they are removed.

    Attributes:
        supervisor: Process supervisor shared by all sessions.

    """

    def __init__(self, supervisor: ProcessSupervisor) -> None:
        """Initialize session manager.

        Args:
            supervisor: Process supervisor shared by all sessions.

        """
        self.supervisor = supervisor
        self._bridges: dict[str, SessionBridge] = {}

    @property
    def count(self) -> int:
        """Number of open sessions."""
        return len(self._bridges)

    def create(self, send: EventSender) -> SessionBridge:
        """Create a session for a new connection.

        Args:
            send: Coroutine delivering one event to the viewer.

        Returns:
            SessionBridge for the new session (not yet opened).

        """
        bridge = SessionBridge(Session(), self.supervisor, send)
        self._bridges[bridge.session_id] = bridge
        logger.debug("Created session %s (total: %d)", bridge.session_id[:8], len(self._bridges))
        return bridge

    def get(self, session_id: str) -> SessionBridge | None:
        """Get a session bridge if it exists.

        Args:
            session_id: Session UUID.

        Returns:
            SessionBridge or None.

        """
        return self._bridges.get(session_id)

    async def close(self, session_id: str) -> bool:
        """Close and remove a session.

        Args:
            session_id: Session UUID.

        Returns:
            True if the session existed.

        """
        bridge = self._bridges.pop(session_id, None)
        if bridge is None:
            return False
        await bridge.close()
        logger.info("Session %s removed (remaining: %d)", session_id[:8], len(self._bridges))
        return True

    def list_all(self) -> list[dict[str, Any]]:
        """Get summaries of all open sessions."""
        return [bridge.summary() for bridge in self._bridges.values()]

    async def shutdown(self) -> None:
        """Close all sessions."""
        session_ids = list(self._bridges)
        if session_ids:
            await asyncio.gather(*(self.close(sid) for sid in session_ids), return_exceptions=True)
        logger.info("All sessions closed")
