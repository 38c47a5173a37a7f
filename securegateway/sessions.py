"""
Session registry and temporary caller blocks
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from .utils import generate_id, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """A session bound to exactly one caller"""
    session_id: str
    caller_id: str
    created_at: datetime
    expires_at: datetime
    revoked: bool = False

    def is_active(self, now: datetime) -> bool:
        return not self.revoked and now < self.expires_at

    def to_dict(self) -> Dict[str, object]:
        return {
            "sessionId": self.session_id,
            "callerId": self.caller_id,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }


@dataclass
class CallerBlock:
    caller_id: str
    reason: str
    until: datetime


class SessionManager:
    """Creates, validates and revokes sessions; tracks blocked callers"""

    def __init__(self, ttl_minutes: int = 30, clock: Callable[[], datetime] = utcnow):
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock
        self.sessions: Dict[str, Session] = {}
        self.blocks: Dict[str, CallerBlock] = {}
        self._lock = threading.Lock()

    def create_session(self, caller_id: str, session_id: Optional[str] = None) -> Session:
        """Create a new session for a caller"""
        if not caller_id:
            raise ValueError("caller_id is required to create a session")
        now = self.clock()
        session = Session(
            session_id=session_id or generate_id("sess"),
            caller_id=caller_id,
            created_at=now,
            expires_at=now + self.ttl,
        )
        with self._lock:
            self.sessions[session.session_id] = session
        logger.info(f"Created session {session.session_id} for {caller_id}")
        return session

    def validate(self, session_id: str, caller_id: str) -> bool:
        """True iff the session exists, is bound to the caller and has not expired"""
        now = self.clock()
        with self._lock:
            if not (session := self.sessions.get(session_id)):
                return False
            if not session.is_active(now):
                # Expired sessions are dropped on first sight
                if not session.revoked:
                    logger.info(f"Session {session_id} expired")
                del self.sessions[session_id]
                return False
        if session.caller_id != caller_id:
            logger.warning(f"Session {session_id} presented by {caller_id} but bound to {session.caller_id}")
            return False
        return True

    def revoke(self, session_id: str) -> bool:
        with self._lock:
            if not (session := self.sessions.pop(session_id, None)):
                return False
            session.revoked = True
        logger.info(f"Revoked session {session_id}")
        return True

    def block(self, caller_id: str, reason: str, hours: float = 24.0) -> CallerBlock:
        """Block a caller for a cool-down period; all of its sessions are revoked"""
        block = CallerBlock(caller_id=caller_id, reason=reason, until=self.clock() + timedelta(hours=hours))
        with self._lock:
            self.blocks[caller_id] = block
            for session_id in [s.session_id for s in self.sessions.values() if s.caller_id == caller_id]:
                self.sessions[session_id].revoked = True
        logger.warning(f"Blocked caller {caller_id} until {block.until.isoformat()}: {reason}")
        return block

    def is_blocked(self, caller_id: str) -> bool:
        with self._lock:
            if not (block := self.blocks.get(caller_id)):
                return False
            if self.clock() >= block.until:
                del self.blocks[caller_id]
                return False
            return True

    def get_block(self, caller_id: str) -> Optional[CallerBlock]:
        return self.blocks.get(caller_id) if self.is_blocked(caller_id) else None
