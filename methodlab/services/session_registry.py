"""
In-memory registry of workflow coordinators, one per user session.

Each session gets its own WorkflowCoordinator so that at most one Method
Card run is in flight per session. All coordinators share one Gemini client.

Sessions are created only by submissions. Settled sessions are evicted once
idle for longer than the TTL, and least recently used settled sessions are
dropped when the registry exceeds its size limit. Busy sessions are never
evicted.
"""

import logging
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from methodlab.config import settings
from methodlab.services.draft_stage import DraftStage
from methodlab.services.gemini_service import GeminiService
from methodlab.services.qc_stage import QCStage
from methodlab.services.workflow_coordinator import WorkflowCoordinator

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"


class SessionRegistry:
    """Maps session ids to their WorkflowCoordinator."""

    def __init__(
        self,
        coordinator_factory: Optional[Callable[[], WorkflowCoordinator]] = None,
        max_sessions: Optional[int] = None,
        idle_ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize an empty registry.

        Args:
            coordinator_factory: Builds a coordinator for a new session
            max_sessions: Size limit (default from settings)
            idle_ttl_seconds: Idle time before eviction (default from settings)
            clock: Monotonic time source
        """
        self._factory = coordinator_factory or self._default_factory
        self.max_sessions = max_sessions or settings.session_max_count
        self.idle_ttl_seconds = idle_ttl_seconds or settings.session_idle_ttl_seconds
        self._clock = clock
        # session_id -> (coordinator, last_used), least recently used first
        self._sessions: "OrderedDict[str, Tuple[WorkflowCoordinator, float]]" = OrderedDict()
        self._gemini_service: Optional[GeminiService] = None

    def _default_factory(self) -> WorkflowCoordinator:
        if self._gemini_service is None:
            self._gemini_service = GeminiService()
        return WorkflowCoordinator(
            draft_stage=DraftStage(self._gemini_service),
            qc_stage=QCStage(self._gemini_service),
        )

    def get(self, session_id: Optional[str] = None) -> WorkflowCoordinator:
        """Get or create the coordinator for a session."""
        session_id = session_id or DEFAULT_SESSION_ID
        coordinator = self.find(session_id)
        if coordinator is None:
            self.evict()
            logger.info(f"Creating workflow coordinator for session {session_id}")
            coordinator = self._factory()
            self._sessions[session_id] = (coordinator, self._clock())
        return coordinator

    def find(self, session_id: Optional[str] = None) -> Optional[WorkflowCoordinator]:
        """Coordinator for a known session, or None. Never creates one."""
        session_id = session_id or DEFAULT_SESSION_ID
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        coordinator = entry[0]
        self._sessions[session_id] = (coordinator, self._clock())
        self._sessions.move_to_end(session_id)
        return coordinator

    def discard(self, session_id: str) -> bool:
        """Drop a session's coordinator, cancelling any in-flight run."""
        entry = self._sessions.pop(session_id, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def evict(self) -> int:
        """
        Drop expired settled sessions, then the least recently used settled
        ones until there is room for one more.

        Returns:
            Number of sessions evicted
        """
        now = self._clock()
        expired = [
            session_id
            for session_id, (coordinator, last_used) in self._sessions.items()
            if not coordinator.is_busy and now - last_used >= self.idle_ttl_seconds
        ]
        for session_id in expired:
            del self._sessions[session_id]

        evicted = len(expired)
        for session_id, (coordinator, _) in list(self._sessions.items()):
            if len(self._sessions) < self.max_sessions:
                break
            if not coordinator.is_busy:
                del self._sessions[session_id]
                evicted += 1

        if evicted:
            logger.info(f"Evicted {evicted} idle sessions ({len(self._sessions)} remain)")
        return evicted

    def __len__(self) -> int:
        return len(self._sessions)
