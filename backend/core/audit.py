"""
Audit Logging - Every reservation mutation is tracked
"""
from datetime import datetime, timezone
from typing import Dict, Any, Optional
import logging
import uuid

from pymongo.errors import PyMongoError

from .database import db

logger = logging.getLogger(__name__)


async def create_audit_log(
    actor: dict,
    entity: str,
    entity_id: str,
    action: str,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None
):
    """
    Create an audit log entry for a mutation.

    Args:
        actor: Who performed the action (must have 'id' and 'email')
        entity: The type of entity being modified (e.g., 'reservation', 'slot')
        entity_id: The ID of the entity being modified
        action: The action being performed (see AuditAction enum)
        before: The state before the change (optional)
        after: The state after the change (optional)
        metadata: Additional metadata to include (optional)

    The mutation itself is already committed when this runs, so a failed
    audit write is logged and not raised.
    """
    audit_doc = {
        "id": str(uuid.uuid4()),
        "actor_id": actor.get("id", "unknown"),
        "actor_email": actor.get("email", "unknown"),
        "entity": entity,
        "entity_id": entity_id,
        "action": action,
        "before": safe_dict_for_audit(before),
        "after": safe_dict_for_audit(after),
        "metadata": metadata,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        await db.audit_logs.insert_one(audit_doc)
    except PyMongoError as e:
        logger.error(f"Audit log for {entity} {entity_id} ({action}) not written: {e}")
        return None
    return audit_doc


def safe_dict_for_audit(obj: Optional[dict]) -> Optional[dict]:
    """
    Create a safe dictionary for audit logging.
    Removes internal fields and converts non-serializable types.
    """
    if obj is None:
        return None

    excluded_fields = {'_id', 'claims'}

    result = {}
    for key, value in obj.items():
        if key in excluded_fields:
            continue

        if isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, dict):
            result[key] = safe_dict_for_audit(value)
        else:
            result[key] = value

    return result


# System actor for automated actions
SYSTEM_ACTOR = {
    "id": "system",
    "email": "system@lateseat.local"
}


def guest_actor(email: Optional[str]) -> dict:
    """Actor for unauthenticated guest requests"""
    return {"id": "guest", "email": email or "unknown"}
