"""
Audit Service — Manages the immutable, hash-chained audit trail.
"""
import json
from typing import Optional, Dict

from sqlalchemy.orm import Session

from wallet_ledger.models.audit import AuditLog
from wallet_ledger.utils.hashing import generate_chain_hash
from wallet_ledger.utils.timeutils import utcnow


def _chain_payload(entry: AuditLog) -> dict:
    return {
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "user_id": entry.user_id,
        "details": entry.details or {},
    }


class AuditService:
    """Creates tamper-evident audit log entries with hash chaining."""

    @staticmethod
    def log(
        db: Session,
        partner_id: int,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        details: Optional[Dict] = None,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
    ) -> AuditLog:
        """Create an audit log entry with hash chaining.

        The entry is flushed, not committed: it belongs to the caller's
        unit of work and disappears with it on rollback.

        Args:
            db: Database session.
            partner_id: Partner whose chain the entry extends.
            action: Action identifier (e.g. withdrawal.requested).
            entity_type: Kind of record acted on (withdrawal, wallet, revenue).
            entity_id: Id of that record.
            details: JSON-safe data to store and hash.
            user_id: Acting user, if known.
            ip_address: Client IP.

        Returns:
            The created AuditLog entry.
        """
        # Get the hash of the last entry for this partner (chain linking)
        last_entry = (
            db.query(AuditLog)
            .filter(AuditLog.partner_id == partner_id)
            .order_by(AuditLog.id.desc())
            .first()
        )
        previous_hash = last_entry.payload_hash if last_entry else ""

        # Round-trip through JSON so the stored and hashed forms are identical
        safe_details = json.loads(json.dumps(details or {}, default=str))

        entry = AuditLog(
            partner_id=partner_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            details=safe_details,
            previous_hash=previous_hash,
            ip_address=ip_address,
            created_at=utcnow(),
        )
        entry.payload_hash = generate_chain_hash(_chain_payload(entry), previous_hash)

        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def get_trail(db: Session, partner_id: int) -> list[AuditLog]:
        """Get the full audit trail for a partner, ordered chronologically."""
        return (
            db.query(AuditLog)
            .filter(AuditLog.partner_id == partner_id)
            .order_by(AuditLog.id.asc())
            .all()
        )

    @staticmethod
    def list_logs(
        db: Session,
        partner_id: Optional[int] = None,
        user_id: Optional[int] = None,
        action: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditLog]:
        query = db.query(AuditLog)
        if partner_id is not None:
            query = query.filter(AuditLog.partner_id == partner_id)
        if user_id is not None:
            query = query.filter(AuditLog.user_id == user_id)
        if action:
            query = query.filter(AuditLog.action == action)
        return query.order_by(AuditLog.id.desc()).offset(offset).limit(limit).all()

    @staticmethod
    def verify_chain(db: Session, partner_id: int) -> dict:
        """Verify the integrity of a partner's audit chain.

        Both the link to the previous entry and the entry's own hash are
        recomputed, so edited details are caught as well as removed rows.

        Returns:
            dict with 'valid' (bool), 'total_entries', and 'broken_at' (if invalid).
        """
        entries = AuditService.get_trail(db, partner_id)

        if not entries:
            return {"valid": True, "total_entries": 0, "broken_at": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].payload_hash if i > 0 else ""
            expected_hash = generate_chain_hash(_chain_payload(entry), expected_prev)
            if entry.previous_hash != expected_prev or entry.payload_hash != expected_hash:
                return {
                    "valid": False,
                    "total_entries": len(entries),
                    "broken_at": entry.id,
                    "message": f"Chain broken at entry {entry.id} ({entry.action})",
                }

        return {"valid": True, "total_entries": len(entries), "broken_at": None}
