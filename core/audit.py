"""
Audit trail for billing entity changes.

Every mutation to an invoice, its splits or its payments is logged here. The
audit log is:
- Append-only (entries never modified or deleted)
- User-attributed (who made the change)
- Detailed (captures old and new values)
- Transactional (written through the same store transaction as the change,
  so a rolled-back mutation leaves no audit entry behind)
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from core.store import StoreTransaction
from utils.user_context import get_current_user_id
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Audit trail writer.

    Always pass model_dump(mode="json") output so UUIDs, dates and Decimals
    are stored as JSON-compatible values.

    Usage:
        audit = AuditLogger()

        with store.transaction() as tx:
            row = tx.insert_invoice(...)
            invoice = Invoice.model_validate(row)
            audit.log_change(
                tx,
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.CREATE,
                changes={"created": invoice.model_dump(mode="json")}
            )
    """

    def log_change(
        self,
        tx: StoreTransaction,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: UUID | None = None
    ) -> None:
        """
        Log an entity change inside the caller's transaction.

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - DELETE: {"deleted": {full entity data at deletion}}
        """
        if user_id is None:
            user_id = get_current_user_id()

        tx.insert_audit_entry({
            "id": uuid4(),
            "user_id": user_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action.value,
            "changes": changes,
            "created_at": now_utc(),
        })

    def get_entity_history(
        self,
        tx: StoreTransaction,
        entity_type: str,
        entity_id: UUID
    ) -> list[dict[str, Any]]:
        """Full audit history for an entity, newest first."""
        return tx.list_audit_entries(entity_type, entity_id)
