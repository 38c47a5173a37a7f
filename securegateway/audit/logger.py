"""
Audit Logger - buffered, batch-flushed security event log
"""
import asyncio
import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..errors import PersistenceFailure, SecurityError
from ..models import SecureRequest, SecurityContext, Severity
from ..utils import truncate
from . import compliance
from .models import (
    AI_REQUEST_FAILED,
    HIGH_THREAT_DETECTED,
    SECURITY_VIOLATION,
    AuditLogEntry,
    AuditQuery,
    ComplianceReport,
)
from .store import AuditStore, MemoryAuditStore

logger = logging.getLogger(__name__)


def violation_threat_score(severities: Iterable[Severity]) -> float:
    """Sum of per-severity risk increments, clamped to 1.0"""
    return min(sum(s.risk_increment for s in severities), 1.0)


class AuditLogger:
    """
    Buffers audit entries in memory and writes them to a store in batches.

    record() only appends to the buffer. A background task started with
    start() flushes when the buffer reaches capacity or the flush interval
    elapses. A batch that fails to persist goes back to the front of the
    buffer and is retried on the next flush.
    """

    def __init__(
        self,
        store: Optional[AuditStore] = None,
        buffer_size: int = 100,
        flush_interval_seconds: float = 30.0,
    ):
        self.store = store or MemoryAuditStore()
        self.buffer_size = buffer_size
        self.flush_interval_seconds = flush_interval_seconds
        self.buffer: List[AuditLogEntry] = []
        self._in_flight: List[AuditLogEntry] = []
        self._lock = threading.Lock()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._flush_requested: Optional[asyncio.Event] = None
        self._flush_lock: Optional[asyncio.Lock] = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self.buffer) + len(self._in_flight)

    def record(self, entry: AuditLogEntry) -> None:
        """Append an entry; returns immediately and never raises on persistence problems"""
        with self._lock:
            self.buffer.append(entry)
            full = len(self.buffer) >= self.buffer_size
        if full:
            self._request_flush()

    def _request_flush(self) -> None:
        if self._loop is None or self._flush_requested is None or self._loop.is_closed():
            return
        # record() may run on any thread
        self._loop.call_soon_threadsafe(self._flush_requested.set)

    async def start(self) -> None:
        """Launch the background flusher on the running event loop"""
        if self._task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._flush_requested = asyncio.Event()
        self._flush_lock = asyncio.Lock()
        self._closing = False
        self._task = asyncio.create_task(self._flush_loop())
        logger.info(
            f"Audit logger started (buffer {self.buffer_size}, interval {self.flush_interval_seconds}s, "
            f"store {self.store.__class__.__name__})"
        )
        if len(self.buffer) >= self.buffer_size:
            self._flush_requested.set()

    async def _flush_loop(self) -> None:
        while not self._closing:
            try:
                await asyncio.wait_for(self._flush_requested.wait(), timeout=self.flush_interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._flush_requested.clear()
            if self._closing:
                break
            try:
                await self.flush()
            except Exception as e:
                logger.error(f"Unexpected error in audit flusher: {e}", exc_info=True)

    async def flush(self) -> int:
        """
        Write every buffered entry as one batch.

        Returns:
            Number of entries persisted; 0 when the buffer was empty or the
            batch failed and was put back for retry.
        """
        if self._flush_lock is None:
            self._flush_lock = asyncio.Lock()

        async with self._flush_lock:
            with self._lock:
                batch, self.buffer = self.buffer, []
                self._in_flight = batch
            if not batch:
                return 0

            try:
                await asyncio.to_thread(self.store.insert_batch, batch)
            except PersistenceFailure as e:
                self._requeue(batch)
                logger.error(f"Audit flush failed, {len(batch)} entries kept for retry: {e.message}")
                return 0
            except Exception as e:
                self._requeue(batch)
                logger.error(f"Unexpected audit store error, {len(batch)} entries kept for retry: {e}", exc_info=True)
                return 0

            with self._lock:
                self._in_flight = []
            logger.debug(f"Flushed {len(batch)} audit entries")
            return len(batch)

    def _requeue(self, batch: List[AuditLogEntry]) -> None:
        """Put a failed batch back in front of entries recorded meanwhile"""
        with self._lock:
            self.buffer[:0] = batch
            self._in_flight = []

    async def close(self) -> None:
        """Stop the flusher and drain the buffer"""
        self._closing = True
        if self._task is not None:
            self._flush_requested.set()
            await self._task
            self._task = None

        await self.flush()
        if remaining := self.pending_count:
            logger.error(f"Audit logger closed with {remaining} entries not persisted")
        self.store.close()

    async def query(self, query: Optional[AuditQuery] = None) -> List[AuditLogEntry]:
        """Entries matching the filters, newest first, across the store and the buffer"""
        query = query or AuditQuery()
        unpaged = replace(query, limit=None, offset=0)
        stored = await asyncio.to_thread(self.store.query, unpaged)

        with self._lock:
            pending = self._in_flight + self.buffer
        stored_ids = {entry.id for entry in stored}
        merged = stored + [entry for entry in pending if entry.id not in stored_ids]
        return query.apply(merged)

    async def compliance_report(
        self, start: datetime, end: datetime, caller_id: Optional[str] = None
    ) -> ComplianceReport:
        entries = await self.query(AuditQuery(caller_id=caller_id, start=start, end=end))
        return compliance.analyze(entries, start, end)

    def log_security_violation(
        self,
        request: SecureRequest,
        context: SecurityContext,
        violations: List[Any],
        risk_level: Severity,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            caller_id=request.caller_id,
            action=SECURITY_VIOLATION,
            success=False,
            security_level=Severity.HIGH,
            threat_score=violation_threat_score(v.severity for v in violations),
            metadata={
                "requestId": request.request_id,
                "violations": [v.to_dict() for v in violations],
                "riskLevel": risk_level.value,
                "violationCount": len(violations),
            },
            **_context_fields(context),
        )
        self.record(entry)
        return entry

    def log_high_threat(
        self,
        request: SecureRequest,
        context: SecurityContext,
        threat_score: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            caller_id=request.caller_id,
            action=HIGH_THREAT_DETECTED,
            success=False,
            security_level=Severity.CRITICAL,
            threat_score=threat_score,
            metadata={"requestId": request.request_id, "threatLevel": threat_score, **(metadata or {})},
            **_context_fields(context),
        )
        self.record(entry)
        return entry

    def log_security_error(
        self,
        request: SecureRequest,
        context: SecurityContext,
        error: SecurityError,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """Terminal entry for a request whose pipeline aborted"""
        entry = AuditLogEntry(
            caller_id=request.caller_id or "anonymous",
            action=AI_REQUEST_FAILED,
            success=False,
            security_level=error.severity,
            threat_score=context.risk_profile.risk_score,
            metadata={
                "requestId": request.request_id,
                "targetModule": request.target_module,
                "error": error.to_dict(),
                "contentPreview": truncate(request.content),
                **(metadata or {}),
            },
            **_context_fields(context),
        )
        self.record(entry)
        return entry

    def log_ai_access(
        self,
        caller_id: str,
        action: str,
        resource: str,
        success: bool,
        metadata: Dict[str, Any],
        context: Optional[SecurityContext] = None,
        threat_score: Optional[float] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            caller_id=caller_id,
            action=action,
            resource=resource,
            success=success,
            security_level=Severity.LOW if success else Severity.MEDIUM,
            threat_score=threat_score if threat_score is not None else (0.0 if success else 0.3),
            metadata=metadata,
            **(_context_fields(context) if context else {}),
        )
        self.record(entry)
        return entry

    def log_compliance_event(self, event_type: str, caller_id: str, details: Dict[str, Any]) -> AuditLogEntry:
        entry = AuditLogEntry(
            caller_id=caller_id,
            action=f"compliance_{event_type}",
            resource="compliance_system",
            metadata={"complianceEvent": event_type, **details},
            network_origin="system",
            user_agent="system",
            session_id="system",
        )
        self.record(entry)
        return entry


def _context_fields(context: SecurityContext) -> Dict[str, str]:
    return {
        "network_origin": context.network_origin,
        "user_agent": context.user_agent,
        "session_id": context.session_id,
    }
