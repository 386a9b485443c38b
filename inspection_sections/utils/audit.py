"""
Audit Log Helper
Provides log_audit() for recording every mutating operation.

Usage:
    from inspection_sections.utils.audit import log_audit

    log_audit(
        db=conn,
        org_id=inspection['org_id'],
        entity_type='inspection',
        entity_id=inspection_id,
        action='section_saved',
        old_value='IN_PROGRESS',
        new_value='SUBMITTED',
        user_id=caller.user_id,
        metadata={'section': 'jbox', 'progress': 100, 'isCompletion': True}
    )

Entries are append-only; the schema refuses UPDATE and DELETE on audit_log.
"""

import json
from datetime import datetime, timezone

from inspection_sections.utils import generate_id


def log_audit(db, org_id, entity_type, entity_id, action,
              old_value=None, new_value=None,
              user_id=None, metadata=None):
    """
    Record an audit trail entry.

    Args:
        db: SQLite connection (inside the caller's transaction)
        org_id: Organization owning the entity
        entity_type: 'inspection' or 'section_answer'
        entity_id: ID of the entity being changed
        action: What happened (see ACTION_TYPES below)
        old_value: Previous status (optional)
        new_value: New status (optional)
        user_id: Who performed the action
        metadata: dict snapshot of the outcome (section, progress, ...)
    """
    audit_id = generate_id('aud')
    now = datetime.now(timezone.utc).isoformat()

    db.execute(
        '''INSERT INTO audit_log
           (id, org_id, entity_type, entity_id, action,
            old_value, new_value, user_id, metadata, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)''',
        (audit_id, org_id, entity_type, entity_id, action,
         old_value, new_value,
         user_id or 'system',
         json.dumps(metadata, ensure_ascii=False) if metadata is not None else None,
         now)
    )

    return audit_id


def list_audit(db, entity_type, entity_id):
    """Audit entries for one entity, oldest first."""
    rows = db.execute(
        '''SELECT * FROM audit_log
           WHERE entity_type = ? AND entity_id = ?
           ORDER BY created_at, rowid''',
        (entity_type, entity_id)
    ).fetchall()
    entries = []
    for row in rows:
        entry = dict(row)
        entry['metadata'] = json.loads(entry['metadata']) if entry['metadata'] else None
        entries.append(entry)
    return entries


# --- Standard action types for reference ---
# section_saved        - Section answers written (partial merge)
# inspection_completed - Last section saved, records compacted into final
# section_confirmed    - Section reviewed and confirmed by the inspector
# signatures_saved     - Signatures merged into the latest answer record
