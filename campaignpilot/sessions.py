from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .wizard import CampaignWizard

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    wizard: CampaignWizard
    user_id: str
    last_seen: float


class WizardSessions:
    """In-process registry of open wizards, keyed by session id.

    Each wizard is owned by one user; lookups by another user behave like a
    missing session. Idle sessions expire after `ttl_seconds` and are evicted
    lazily on access. The lock guards the map only, never a wizard.
    """

    def __init__(
        self,
        factory: Callable[[str, str], CampaignWizard],
        *,
        ttl_seconds: int,
        max_sessions: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self._ttl = ttl_seconds
        self._max = max_sessions
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._entries)

    def create(self, user_id: str) -> CampaignWizard:
        session_id = uuid.uuid4().hex
        wizard = self._factory(session_id, user_id)
        with self._lock:
            self._evict_expired()
            if len(self._entries) >= self._max:
                # Drop the least recently used session to make room.
                oldest = min(self._entries, key=lambda k: self._entries[k].last_seen)
                logger.warning("Wizard session limit reached; evicting oldest", extra={"session_id": oldest})
                del self._entries[oldest]
            self._entries[session_id] = _Entry(wizard=wizard, user_id=user_id, last_seen=self._clock())
        return wizard

    def get(self, session_id: str, user_id: str) -> Optional[CampaignWizard]:
        with self._lock:
            self._evict_expired()
            entry = self._entries.get(session_id)
            if entry is None or entry.user_id != user_id:
                return None
            entry.last_seen = self._clock()
            return entry.wizard

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._entries.pop(session_id, None)

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.last_seen > self._ttl]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.info("Evicted %s idle wizard session(s)", len(expired))
