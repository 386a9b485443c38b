"""
Field ordering for submitted section answers.

Clients name fields inconsistently (field_<id>, camelCase, with or without
the _status suffix). Answers are matched back to the template's field ids
and emitted in template order. Nothing the client sent is dropped.
"""
import logging
import re

from pydantic import ValidationError as SchemaError

from inspection_sections.errors import ValidationError
from inspection_sections.models import FieldAnswer

logger = logging.getLogger(__name__)

FIELD_PREFIX = 'field_'
STATUS_SUFFIX = '_status'

_SNAKE_SEGMENT = re.compile(r'_([a-z])')


def _strip_suffix(field_id: str) -> str:
    if field_id.endswith(STATUS_SUFFIX):
        return field_id[:-len(STATUS_SUFFIX)]
    return field_id


def _camel_case(value: str) -> str:
    return _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), value)


def candidate_keys(field_id: str) -> list:
    """Raw keys that may carry the answer for a template field, best first."""
    base = _strip_suffix(field_id)
    candidates = [
        field_id,
        f"{FIELD_PREFIX}{field_id}",
        field_id.replace('_', ''),
        base,
        _camel_case(base),
    ]
    seen = []
    for key in candidates:
        if key and key not in seen:
            seen.append(key)
    return seen


def reconcile_field_keys(raw_answers: dict, field_ids: list) -> list:
    """
    Match raw answer keys to template field ids.

    Returns (output_key, raw_key) pairs: template fields in template order
    first, then every unmatched raw key in submission order. Each raw key
    is used at most once.
    """
    consumed = set()
    pairs = []

    for field_id in field_ids:
        for key in candidate_keys(field_id):
            if key in raw_answers and key not in consumed:
                consumed.add(key)
                pairs.append((field_id, key))
                break

    for key in raw_answers:
        if key not in consumed:
            pairs.append((key, key))

    return pairs


def normalize_section_answers(raw_answers: dict, fields=None) -> dict:
    """
    Build a typed SectionAnswerMap ordered like the template section.

    fields is the template's field list for the section; without it the
    raw order is kept.
    """
    field_ids = [f.id for f in fields] if fields else []
    pairs = reconcile_field_keys(raw_answers, field_ids)

    normalized = {}
    for output_key, raw_key in pairs:
        if output_key in normalized:
            # Template declares the same field id twice
            output_key = raw_key
        try:
            normalized[output_key] = FieldAnswer.from_raw(raw_answers[raw_key])
        except SchemaError as e:
            raise ValidationError(f"Answer for field '{raw_key}' is malformed",
                                  details={'field': raw_key}) from e

    if field_ids:
        _warn_incomplete(normalized, fields)

    return normalized


def _warn_incomplete(normalized: dict, fields) -> None:
    for field in fields:
        answer = normalized.get(field.id)
        if answer is None:
            continue
        if answer.status in (None, ''):
            logger.warning("Field %s submitted without a status", field.id)
