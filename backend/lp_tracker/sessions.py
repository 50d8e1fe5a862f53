"""Per-chat conversation state.

Sessions live in process memory only. A restart drops every in-flight
session and the user simply pastes the data again.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from .schemas import ExtractionRecord


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_PORTFOLIO_TEXT = "awaiting_portfolio_text"
    PREVIEWING = "previewing"
    AWAITING_MANUAL_BALANCE = "awaiting_manual_balance"


@dataclass(slots=True)
class ChatSession:
    state: SessionState = SessionState.IDLE
    pending: ExtractionRecord | None = None
    detected_slot: int | None = None
    slot: int | None = None
    touched_at: float = field(default=0.0)


class SessionStore:
    """Chat id -> :class:`ChatSession`, evicted on completion, cancel or TTL expiry."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[int, ChatSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, chat_id: int) -> ChatSession:
        """Return the live session, or a fresh idle one that is not stored."""
        self.purge_expired()
        return self._sessions.get(chat_id) or ChatSession()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, session in self._sessions.items() if now - session.touched_at > self.ttl_seconds]
        for key in expired:
            del self._sessions[key]
        return len(expired)

    def _store(self, chat_id: int, session: ChatSession) -> ChatSession:
        session.touched_at = self._clock()
        self._sessions[chat_id] = session
        return session

    def begin_input(self, chat_id: int) -> ChatSession:
        return self._store(chat_id, ChatSession(state=SessionState.AWAITING_PORTFOLIO_TEXT))

    def start_preview(self, chat_id: int, record: ExtractionRecord, detected_slot: int | None) -> ChatSession:
        return self._store(
            chat_id,
            ChatSession(state=SessionState.PREVIEWING, pending=record, detected_slot=detected_slot),
        )

    def await_manual_balance(self, chat_id: int, slot: int) -> ChatSession:
        session = self.get(chat_id)
        if session.state is not SessionState.PREVIEWING or session.pending is None:
            raise ValueError("No previewed record to attach a manual balance to.")
        session.state = SessionState.AWAITING_MANUAL_BALANCE
        session.slot = slot
        return self._store(chat_id, session)

    def clear(self, chat_id: int) -> None:
        self._sessions.pop(chat_id, None)
