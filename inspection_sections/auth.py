"""
Caller identity and the inspection access guard.

Identity is issued by the external auth service. It arrives either in the
Flask session (user_id, org_id) or, when TRUST_IDENTITY_HEADERS is set,
in X-User-Id / X-Org-Id headers forwarded by the gateway.

Access rule (same for every read and write):
- caller belongs to the inspection's organization, or
- caller is the assignee, or
- caller created the inspection
"""
import logging
from functools import wraps
from typing import NamedTuple, Optional

from flask import current_app, jsonify, request, session

from inspection_sections.errors import Forbidden, NotFound

logger = logging.getLogger(__name__)


class CallerIdentity(NamedTuple):
    user_id: str
    org_id: Optional[str] = None


def get_current_user() -> Optional[CallerIdentity]:
    """Get caller identity for the current request."""
    if 'user_id' in session:
        return CallerIdentity(str(session['user_id']),
                              _as_str(session.get('org_id')))

    if current_app.config.get('TRUST_IDENTITY_HEADERS'):
        user_id = request.headers.get('X-User-Id', '').strip()
        if user_id:
            return CallerIdentity(user_id,
                                  _as_str(request.headers.get('X-Org-Id', '').strip()))

    return None


def _as_str(value):
    if value is None or value == '':
        return None
    return str(value)


def require_auth(f):
    """Require an identified caller; the identity is passed as `caller`."""
    @wraps(f)
    def decorated(*args, **kwargs):
        caller = get_current_user()
        if caller is None:
            return jsonify({
                'error': 'Unauthorized',
                'message': 'Authentication required',
            }), 401
        return f(*args, caller=caller, **kwargs)
    return decorated


def has_access(inspection, caller: CallerIdentity) -> bool:
    same_org = caller.org_id is not None and str(inspection['org_id']) == caller.org_id
    is_assignee = inspection['assigned_to'] is not None and str(inspection['assigned_to']) == caller.user_id
    is_creator = str(inspection['created_by']) == caller.user_id
    return same_org or is_assignee or is_creator


def load_inspection_for(db, inspection_id, caller: CallerIdentity):
    """
    Fetch an inspection the caller may work on.

    Raises NotFound for unknown or soft-deleted inspections and Forbidden
    when the access rule fails.
    """
    inspection = db.execute("""
        SELECT id, template_id, org_id, assigned_to, created_by, title,
               status, progress, completed_at, deleted_at
        FROM inspection WHERE id = ?
    """, [str(inspection_id)]).fetchone()

    if inspection is None or inspection['deleted_at'] is not None:
        raise NotFound(f"Inspection with ID {inspection_id} does not exist")

    if not has_access(inspection, caller):
        logger.warning("Access denied: user %s (org %s) on inspection %s",
                       caller.user_id, caller.org_id, inspection_id)
        raise Forbidden('You do not have access to this inspection')

    return inspection
