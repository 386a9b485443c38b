"""
Progress and status transitions for inspections.

Lifecycle:
    DRAFT -> IN_PROGRESS -> SUBMITTED -> APPROVED | REJECTED
    CANCELED from any non-terminal state (approval workflow, not here)

Every successful section save moves progress to the saved section's
position and the status to IN_PROGRESS, or SUBMITTED on the last section.
"""
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple, Optional

from inspection_sections.errors import Conflict

logger = logging.getLogger(__name__)

DRAFT = 'DRAFT'
IN_PROGRESS = 'IN_PROGRESS'
SUBMITTED = 'SUBMITTED'
APPROVED = 'APPROVED'
REJECTED = 'REJECTED'
CANCELED = 'CANCELED'

# Owned by the approval workflow; saves are refused once here
LOCKED_STATUSES = (APPROVED, REJECTED, CANCELED)


class Transition(NamedTuple):
    old_status: str
    status: str
    old_progress: int
    progress: int
    completed_at: Optional[str]


def compute_progress(section_index: int, total_sections: int) -> int:
    """round(100 * (index + 1) / total), halves rounded up, clamped to 0..100."""
    if total_sections <= 0:
        return 0
    raw = Decimal(100 * (section_index + 1)) / Decimal(total_sections)
    value = int(raw.quantize(Decimal('1'), rounding=ROUND_HALF_UP))
    return max(0, min(100, value))


def ensure_editable(inspection) -> None:
    """Refuse writes once the approval workflow owns the inspection."""
    if inspection['status'] in LOCKED_STATUSES:
        raise Conflict(f"Inspection is {inspection['status']} and can no longer be edited",
                       details={'status': inspection['status']})


def plan_transition(inspection, progress: int, is_last_section: bool,
                    is_completion: bool) -> Transition:
    """
    Work out the new status and progress after a section save.

    Progress never goes down during normal flow. A completion always
    lands on 100. SUBMITTED is sticky for later corrections.
    """
    old_status = inspection['status']
    old_progress = inspection['progress'] or 0

    new_progress = 100 if is_completion else max(old_progress, progress)

    if is_last_section or is_completion or old_status == SUBMITTED:
        new_status = SUBMITTED
    else:
        new_status = IN_PROGRESS

    completed_at = inspection['completed_at']
    if new_status == SUBMITTED and old_status != SUBMITTED:
        completed_at = datetime.now(timezone.utc).isoformat()

    return Transition(old_status, new_status, old_progress, new_progress, completed_at)


def apply_transition(db, inspection_id: str, transition: Transition, user_id: str) -> None:
    """Write the planned status/progress. Must run inside a transaction."""
    now = datetime.now(timezone.utc).isoformat()
    db.execute("""
        UPDATE inspection
        SET status = ?, progress = ?, completed_at = ?, updated_by = ?, updated_at = ?
        WHERE id = ?
    """, [transition.status, transition.progress, transition.completed_at,
          user_id, now, inspection_id])

    if transition.status != transition.old_status:
        logger.info("Inspection %s: %s -> %s (%d%%)", inspection_id,
                    transition.old_status, transition.status, transition.progress)
