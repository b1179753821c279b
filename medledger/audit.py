"""
Audit log for MedLedger.

An append-only, hash-chained sequence of domain events. Each entry
stores the SHA-256 of its canonical body and an entry hash linking it
to the previous entry, so an exported log can be checked offline.

Events are written inside the caller's transaction. Subscribers are
notified only after that transaction commits; a rolled-back call
leaves no rows and notifies nobody.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from .db import RegistryDatabase
from .models import AuditEvent, EventKind
from .util import chain_entry_hash, now_epoch

logger = logging.getLogger("medledger.events")

Subscriber = Callable[[AuditEvent], None]


class AuditLog:
    """Append-only event sequence backed by the ``audit_log`` table."""

    def __init__(self, db: RegistryDatabase, clock: Callable[[], int] = now_epoch):
        self._db = db
        self._clock = clock
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        self._subscribers.remove(callback)

    def append(
        self,
        kind: EventKind,
        record_id: int,
        patient: Optional[str] = None,
        provider: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        timestamp: Optional[int] = None,
    ) -> AuditEvent:
        """Persist one event and chain it to the previous entry."""
        event = AuditEvent(
            kind=kind,
            record_id=record_id,
            patient=patient,
            provider=provider,
            payload=dict(payload or {}),
            timestamp=self._clock() if timestamp is None else timestamp,
        )

        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM audit_log ORDER BY seq DESC LIMIT 1"
            ).fetchone()
            prev = row["entry_hash"] if row else None
            payload_hash = event.payload_hash()
            entry_hash = chain_entry_hash(prev, payload_hash)

            cur = conn.execute(
                "INSERT INTO audit_log(kind, record_id, patient, provider, payload_json, "
                "occurred_at, payload_hash, prev_entry_hash, entry_hash) VALUES(?,?,?,?,?,?,?,?,?)",
                (kind.value, record_id, patient, provider,
                 json.dumps(event.payload, sort_keys=True), event.timestamp,
                 payload_hash, prev, entry_hash)
            )
            stored = AuditEvent(
                kind=event.kind,
                record_id=event.record_id,
                patient=event.patient,
                provider=event.provider,
                payload=event.payload,
                timestamp=event.timestamp,
                seq=cur.lastrowid,
                prev_entry_hash=prev,
                entry_hash=entry_hash,
            )
            self._db.on_commit(lambda: self._dispatch(stored))

        return stored

    def _dispatch(self, event: AuditEvent) -> None:
        """
        Deliver a committed event to every subscriber.

        A failing subscriber is logged and skipped; the event stays
        persisted and later subscribers still run.
        """
        for callback in list(self._subscribers):
            name = getattr(callback, "__qualname__", repr(callback))
            try:
                callback(event)
            except Exception:
                logger.error(
                    f"Subscriber failed: {name} for {event.kind.value} (seq: {event.seq})",
                    exc_info=True,
                )

    # ------------------------------------------------------------
    # Export
    # ------------------------------------------------------------

    def entries(
        self,
        record_id: Optional[int] = None,
        since_seq: int = 0,
        limit: Optional[int] = None,
    ) -> List[AuditEvent]:
        """
        Export events in sequence order.

        Args:
            record_id: Only events for this record
            since_seq: Only events with a greater sequence number
            limit: Maximum number of events to return
        """
        sql = ("SELECT seq, kind, record_id, patient, provider, payload_json, occurred_at, "
               "prev_entry_hash, entry_hash FROM audit_log WHERE seq > ?")
        params: List[Any] = [since_seq]
        if record_id is not None:
            sql += " AND record_id = ?"
            params.append(record_id)
        sql += " ORDER BY seq ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._db.read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_event(row) for row in rows]

    def export_rows(self) -> List[Dict[str, Any]]:
        """Raw table rows, including stored hashes, for offline verification."""
        with self._db.read() as conn:
            cur = conn.execute(
                "SELECT seq, kind, record_id, patient, provider, payload_json, occurred_at, "
                "payload_hash, prev_entry_hash, entry_hash FROM audit_log ORDER BY seq ASC"
            )
            return [dict(row) for row in cur.fetchall()]

    def verify_chain(self) -> Dict[str, Any]:
        """
        Recompute payload and entry hashes for the whole log.

        Returns:
            {"valid": bool, "entries": int, "broken_at": seq or None, "reason": str}
        """
        return verify_rows(self.export_rows())


def _row_to_event(row) -> AuditEvent:
    return AuditEvent(
        kind=EventKind(row["kind"]),
        record_id=row["record_id"],
        patient=row["patient"],
        provider=row["provider"],
        payload=json.loads(row["payload_json"]),
        timestamp=row["occurred_at"],
        seq=row["seq"],
        prev_entry_hash=row["prev_entry_hash"],
        entry_hash=row["entry_hash"],
    )


def verify_rows(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Verify an exported audit log.

    Each row must hash to its stored ``payload_hash`` and link to the
    ``entry_hash`` of the row before it.
    """
    prev = None
    for row in rows:
        event = _row_to_event(row)
        if event.payload_hash() != row["payload_hash"]:
            return {"valid": False, "entries": len(rows), "broken_at": row["seq"],
                    "reason": "payload hash mismatch"}
        if row["prev_entry_hash"] != prev:
            return {"valid": False, "entries": len(rows), "broken_at": row["seq"],
                    "reason": "previous entry hash mismatch"}
        if chain_entry_hash(prev, row["payload_hash"]) != row["entry_hash"]:
            return {"valid": False, "entries": len(rows), "broken_at": row["seq"],
                    "reason": "entry hash mismatch"}
        prev = row["entry_hash"]
    return {"valid": True, "entries": len(rows), "broken_at": None, "reason": "ok"}
