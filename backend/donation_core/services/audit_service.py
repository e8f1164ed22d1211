"""
Audit Service — Manages the immutable, hash-chained audit trail of financial mutations.
"""
from typing import Optional, Dict

from sqlalchemy.orm import Session

from donation_core.models.audit import AuditLog
from donation_core.utils.dates import utcnow
from donation_core.utils.hashing import generate_chain_hash


class AuditService:
    """Creates tamper-evident audit log entries with hash chaining."""

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: int,
        action: str,
        before: Optional[Dict] = None,
        after: Optional[Dict] = None,
        actor_id: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> AuditLog:
        """Append an audit entry to the caller's transaction.

        The entry is flushed, not committed: it lands together with the
        mutation it describes, or not at all.

        Args:
            db: Database session.
            entity_type: "payment", "subscription" or "certificate".
            entity_id: Primary key of the mutated row.
            action: Action identifier (e.g. PAYMENT_COMPLETED).
            before: Status/amount snapshot prior to the mutation.
            after: Status/amount snapshot after the mutation.
            actor_id: Who triggered it ("system" for scheduler/webhooks).
            metadata: Additional metadata to store.

        Returns:
            The created AuditLog entry.
        """
        # Get the hash of the last entry for this entity (chain linking)
        last_entry = (
            db.query(AuditLog)
            .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.id.desc())
            .first()
        )
        previous_hash = last_entry.payload_hash if last_entry else ""

        payload_data = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "before": before or {},
            "after": after or {},
            "actor_id": actor_id,
        }
        chain_hash = generate_chain_hash(payload_data, previous_hash)

        entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            before=before or {},
            after=after or {},
            payload_hash=chain_hash,
            previous_hash=previous_hash,
            log_metadata=metadata or {},
            timestamp=utcnow(),
        )

        db.add(entry)
        db.flush()

        return entry

    @staticmethod
    def get_trail(db: Session, entity_type: str, entity_id: int) -> list[AuditLog]:
        """Get the full audit trail for an entity, ordered chronologically."""
        return (
            db.query(AuditLog)
            .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.id.asc())
            .all()
        )

    @staticmethod
    def verify_chain(db: Session, entity_type: str, entity_id: int) -> dict:
        """Verify the integrity of the audit chain for an entity.

        Recomputes every entry's hash from its stored fields, so both a
        broken link and an edited before/after snapshot are detected.

        Returns:
            dict with 'valid' (bool), 'total_entries', and 'broken_at' (if invalid).
        """
        entries = AuditService.get_trail(db, entity_type, entity_id)

        if not entries:
            return {"valid": True, "total_entries": 0, "broken_at": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].payload_hash if i > 0 else ""
            recomputed = generate_chain_hash(
                {
                    "entity_type": entry.entity_type,
                    "entity_id": entry.entity_id,
                    "action": entry.action,
                    "before": entry.before or {},
                    "after": entry.after or {},
                    "actor_id": entry.actor_id,
                },
                expected_prev,
            )
            if entry.previous_hash != expected_prev or entry.payload_hash != recomputed:
                return {
                    "valid": False,
                    "total_entries": len(entries),
                    "broken_at": entry.id,
                    "message": f"Chain broken at entry {entry.id} ({entry.action})",
                }

        return {"valid": True, "total_entries": len(entries), "broken_at": None}
