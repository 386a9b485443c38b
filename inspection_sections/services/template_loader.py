"""
Template loader for inspection sections.
Turns a template's question definition into an ordered section/field schema.
"""
import json
import logging
from collections import OrderedDict

from pydantic import ValidationError as SchemaError

from inspection_sections.errors import Internal, NotFound, ValidationError
from inspection_sections.models import TemplateField, TemplateSection

logger = logging.getLogger(__name__)


def resolve_sections(questions) -> OrderedDict:
    """
    Build the section schema from a template's raw question definition.

    Input is the ordered list of section blocks stored on the template:
        [{"section": "exterior", "title": "...", "fields": [...]}, ...]

    Returns OrderedDict of section key -> TemplateSection, in input order.
    Order is the 1-based position of the block in the input, so skipped
    blocks leave gaps. Blocks without a key, title or field list are
    decorative or disabled and are left out.
    """
    if isinstance(questions, (str, bytes)):
        try:
            questions = json.loads(questions)
        except ValueError as e:
            raise ValidationError('Template questions are not valid JSON') from e

    if not isinstance(questions, list):
        raise ValidationError('Template questions must be a list of sections')

    sections = OrderedDict()
    for index, block in enumerate(questions):
        if not isinstance(block, dict):
            continue
        key = _as_text(block.get('section'))
        title = _as_text(block.get('title'))
        fields = block.get('fields')
        if not key or not title or not isinstance(fields, list):
            logger.debug("Skipping template block %d (no key, title or fields)", index)
            continue

        try:
            section = TemplateSection(
                key=key,
                title=title,
                order=index + 1,
                fields=[f for f in (_build_field(raw) for raw in fields) if f is not None],
            )
        except SchemaError as e:
            logger.debug("Skipping template block %d: %s", index, e)
            continue
        sections[key] = section

    return sections


def _as_text(value):
    """Scalar keys and titles as text; anything else counts as missing."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


def _build_field(field):
    """TemplateField for one raw field, or None when it cannot be used."""
    if not isinstance(field, dict):
        return None
    field_id = _as_text(field.get('id'))
    if not field_id:
        return None

    question = field.get('question')
    if isinstance(question, (int, float)) and not isinstance(question, bool):
        question = str(question)
    field_type = field.get('type')
    options = field.get('options')

    try:
        return TemplateField(
            id=field_id,
            question=question or '',
            type=str(field_type) if field_type is not None else None,
            options=options if isinstance(options, list) else [],
            text_required=bool(field.get('text_required', False)),
            image_required=bool(field.get('image_required', False)),
        )
    except SchemaError as e:
        logger.debug("Skipping template field %s: %s", field_id, e)
        return None


def section_order(sections) -> list:
    """Section keys sorted by declared order."""
    return sorted(sections.keys(), key=lambda k: sections[k].order)


def next_section(order: list, section_key: str):
    if section_key not in order:
        return None
    index = order.index(section_key)
    return order[index + 1] if index < len(order) - 1 else None


def previous_section(order: list, section_key: str):
    if section_key not in order:
        return None
    index = order.index(section_key)
    return order[index - 1] if index > 0 else None


def count_questions(sections) -> int:
    """Total number of fields across all sections."""
    return sum(len(s.fields) for s in sections.values())


def load_template(db, template_id):
    """Fetch a template row, or None."""
    if not template_id:
        return None
    return db.execute(
        "SELECT id, name, type, questions, is_active FROM inspection_template WHERE id = ?",
        [template_id]
    ).fetchone()


def get_template_sections(db, inspection, required=True):
    """
    Load the inspection's template and resolve its sections.

    Returns (template_row, sections). With required=False a missing
    template yields (None, OrderedDict()) so callers can run without
    section-order enforcement.
    """
    template = load_template(db, inspection['template_id'])
    if template is None:
        if required:
            raise NotFound('No template found for this inspection')
        logger.info("Inspection %s has no template, running without section order",
                    inspection['id'])
        return None, OrderedDict()

    try:
        sections = resolve_sections(template['questions'])
    except ValidationError as e:
        logger.error("Template %s is unreadable: %s", template['id'], e.message)
        raise Internal(f"Template {template['id']} is unreadable") from e
    return template, sections
