"""
Typed failure outcomes for the section answer engine.

Every failure a caller can see is one of these. The Flask app renders
them as JSON with the matching HTTP status, so callers can tell
"fix the request" apart from "retry the save".
"""


class SectionError(Exception):
    """Base class for engine failures."""

    status_code = 500
    error = 'Internal Error'

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self):
        body = {'error': self.error, 'message': self.message}
        body.update(self.details)
        return body


class NotFound(SectionError):
    """Inspection, template, section or answer record does not exist."""
    status_code = 404
    error = 'Not Found'


class Forbidden(SectionError):
    """Caller failed the access guard."""
    status_code = 403
    error = 'Forbidden'


class ValidationError(SectionError):
    """Request is missing or has malformed fields."""
    status_code = 400
    error = 'Validation Error'


class Conflict(SectionError):
    """Write could not be applied; safe to retry."""
    status_code = 409
    error = 'Conflict'


class Internal(SectionError):
    status_code = 500
    error = 'Internal Error'
