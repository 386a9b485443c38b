"""
Section service - the operations exposed to callers.

Reads go straight to the database. Every write runs as one transaction:
access check, template lookup, field normalization, record write,
status/progress update and audit entry commit together or not at all.
"""
import logging
from datetime import datetime, timezone

from inspection_sections.auth import CallerIdentity, load_inspection_for
from inspection_sections.errors import NotFound, ValidationError
from inspection_sections.models import (
    SaveSectionRequest,
    load_answer_doc,
    section_map_to_json,
)
from inspection_sections.services import answer_store
from inspection_sections.services.compactor import compact
from inspection_sections.services.db import get_db, transaction
from inspection_sections.services.field_order import normalize_section_answers
from inspection_sections.services.progress import (
    LOCKED_STATUSES,
    SUBMITTED,
    apply_transition,
    compute_progress,
    ensure_editable,
    plan_transition,
)
from inspection_sections.services.template_loader import (
    count_questions,
    get_template_sections as load_template_sections,
    next_section,
    previous_section,
    section_order,
)
from inspection_sections.utils.audit import log_audit

logger = logging.getLogger(__name__)


# ============================================================
# HELPERS
# ============================================================

def _require_section(sections, section_key):
    section = sections.get(section_key)
    if section is None:
        raise NotFound(f"Section '{section_key}' does not exist in this inspection template",
                       details={'availableSections': section_order(sections)})
    return section


def _progress_block(index, total):
    return {
        'current': index + 1,
        'total': total,
        'percentage': compute_progress(index, total),
    }


def _navigation(order, section_key):
    nxt = next_section(order, section_key)
    prev = previous_section(order, section_key)
    return {
        'canGoToNext': nxt is not None,
        'canGoToPrevious': prev is not None,
        'nextSection': nxt,
        'previousSection': prev,
    }


def completed_sections(db, inspection_id, order=None):
    """
    Sections with saved answers, in template order.

    Only keys the template declares count; without a template every saved
    section key counts. answeredAt is the write time of the first record
    seen holding the section.
    """
    seen = {}
    for record in answer_store.list_records(db, inspection_id):
        doc = load_answer_doc(record['answers'])
        for key in doc.data:
            if key not in seen and (not order or key in order):
                seen[key] = record['answered_at']

    keys = [k for k in order if k in seen] if order else list(seen)
    return [{'section': k, 'answeredAt': seen[k]} for k in keys]


def _confirmations(db, inspection_id):
    rows = db.execute("""
        SELECT section_key, confirmed_by, confirmed_at
        FROM section_confirmation WHERE inspection_id = ?
    """, [inspection_id]).fetchall()
    return {r['section_key']: r for r in rows}


# ============================================================
# READS
# ============================================================

def get_template_sections(inspection_id, caller: CallerIdentity) -> dict:
    db = get_db()
    inspection = load_inspection_for(db, inspection_id, caller)
    template, sections = _template_sections(db, inspection)
    order = section_order(sections)

    return {
        'inspectionId': inspection['id'],
        'inspection': {
            'id': inspection['id'],
            'title': inspection['title'],
            'status': inspection['status'],
            'progress': inspection['progress'],
        },
        'template': {
            'id': template['id'],
            'name': template['name'],
            'type': template['type'],
        },
        'sections': {key: sections[key].to_json() for key in order},
        'sectionOrder': order,
        'totalSections': len(order),
        'totalQuestions': count_questions(sections),
    }


def _template_sections(db, inspection):
    return load_template_sections(db, inspection, required=True)


def get_section_questions(inspection_id, section_key, caller: CallerIdentity) -> dict:
    db = get_db()
    inspection = load_inspection_for(db, inspection_id, caller)
    _, sections = _template_sections(db, inspection)
    section = _require_section(sections, section_key)

    _, existing = answer_store.latest_section_answers(db, inspection['id'], section_key)

    return {
        'inspectionId': inspection['id'],
        'section': section.to_json(),
        'questions': [f.to_json() for f in section.fields],
        'existingAnswers': section_map_to_json(existing),
        'hasExistingAnswers': len(existing) > 0,
    }


def get_section_review(inspection_id, section_key, caller: CallerIdentity) -> dict:
    db = get_db()
    inspection = load_inspection_for(db, inspection_id, caller)
    _, sections = _template_sections(db, inspection)
    section = _require_section(sections, section_key)
    order = section_order(sections)
    index = order.index(section_key)

    record, saved = answer_store.latest_section_answers(db, inspection['id'], section_key)

    questions_with_answers = []
    for field in section.fields:
        answer = saved.get(field.id)
        entry = field.to_json()
        entry['answer'] = {
            'status': answer.status if answer and answer.status is not None else '',
            'comment': answer.comment if answer and answer.comment else '',
            'images': list(answer.images) if answer else [],
        }
        entry['hasAnswer'] = bool(answer and answer.status)
        questions_with_answers.append(entry)

    confirmation = _confirmations(db, inspection['id']).get(section_key)

    return {
        'inspectionId': inspection['id'],
        'section': {
            'name': section_key,
            'title': section.title,
            'order': section.order,
            'isLast': index == len(order) - 1,
            'confirmed': confirmation is not None,
            'confirmedAt': confirmation['confirmed_at'] if confirmation else None,
        },
        'questionsWithAnswers': questions_with_answers,
        'totalQuestions': len(questions_with_answers),
        'answeredQuestions': sum(1 for q in questions_with_answers if q['hasAnswer']),
        'answerId': record['id'] if record else None,
        'nextSection': next_section(order, section_key),
        'sectionOrder': order,
        'currentIndex': index,
        'totalSections': len(order),
        'progress': _progress_block(index, len(order)),
    }


def get_section_answers_summary(inspection_id, caller: CallerIdentity) -> dict:
    """Every answer record of the inspection, one session per write."""
    db = get_db()
    inspection = load_inspection_for(db, inspection_id, caller)
    records = answer_store.list_records(db, inspection['id'])

    sessions = []
    for record in records:
        doc = load_answer_doc(record['answers'])
        keys = doc.section_keys()
        sessions.append({
            'sessionId': record['id'],
            'kind': doc.kind,
            'answeredBy': record['answered_by'],
            'answeredAt': record['answered_at'],
            'sections': keys,
            'sectionData': {k: section_map_to_json(doc.data[k]) for k in keys},
            'metadata': doc.metadata,
            'remarks': doc.remarks,
            'signatures': doc.signatures,
            'totalQuestions': sum(len(doc.data[k]) for k in keys),
            'totalSections': len(keys),
        })

    return {
        'inspectionId': inspection['id'],
        'sessions': sessions,
        'totalSessions': len(sessions),
        'totalAnswers': sum(s['totalQuestions'] for s in sessions),
    }


def get_next_section(inspection_id, section_key, caller: CallerIdentity) -> dict:
    db = get_db()
    inspection = load_inspection_for(db, inspection_id, caller)
    _, sections = _template_sections(db, inspection)
    _require_section(sections, section_key)
    order = section_order(sections)
    index = order.index(section_key)
    nxt = next_section(order, section_key)

    return {
        'inspectionId': inspection['id'],
        'currentSection': section_key,
        'nextSection': nxt,
        'isLastSection': nxt is None,
        'isInspectionComplete': nxt is None,
        'progress': _progress_block(index, len(order)),
        'completedSections': completed_sections(db, inspection['id'], order),
        'sectionOrder': order,
        'navigation': _navigation(order, section_key),
    }


def get_section_status(inspection_id, caller: CallerIdentity) -> dict:
    db = get_db()
    inspection = load_inspection_for(db, inspection_id, caller)
    _, sections = _template_sections(db, inspection)
    order = section_order(sections)

    saved = {c['section']: c['answeredAt']
             for c in completed_sections(db, inspection['id'], order)}
    confirmations = _confirmations(db, inspection['id'])

    statuses = []
    for key in order:
        confirmation = confirmations.get(key)
        statuses.append({
            'section': key,
            'title': sections[key].title,
            'order': sections[key].order,
            'saved': key in saved,
            'answeredAt': saved.get(key),
            'confirmed': confirmation is not None,
            'confirmedAt': confirmation['confirmed_at'] if confirmation else None,
        })

    return {
        'inspectionId': inspection['id'],
        'status': inspection['status'],
        'progress': inspection['progress'],
        'sectionStatuses': statuses,
        'totalSections': len(order),
        'savedSections': len(saved),
        'confirmedSections': sum(1 for s in statuses if s['confirmed']),
    }


def get_latest_answer_id(inspection_id, caller: CallerIdentity) -> dict:
    db = get_db()
    inspection = load_inspection_for(db, inspection_id, caller)
    latest = answer_store.latest_record(db, inspection['id'])
    return {'answerId': latest['id'] if latest else None}


def get_answer_record(answer_id, caller: CallerIdentity) -> dict:
    db = get_db()
    record = answer_store.get_record(db, answer_id)
    if record is None:
        raise NotFound(f"Inspection answer with ID {answer_id} does not exist")
    load_inspection_for(db, record['inspection_id'], caller)

    doc = load_answer_doc(record['answers'])
    return {
        'id': record['id'],
        'inspectionId': record['inspection_id'],
        'kind': doc.kind,
        'isFinal': bool(record['is_final']),
        'answers': doc.to_json(),
        'answeredBy': record['answered_by'],
        'answeredAt': record['answered_at'],
    }


# ============================================================
# WRITES
# ============================================================

def save_section_answers(payload: SaveSectionRequest, caller: CallerIdentity) -> dict:
    """
    Save one section's answers and advance the inspection.

    On the terminal section (status SUBMITTED requested, or last section
    with sectionStatus COMPLETED) every record is compacted into the final
    one instead of a plain merge.
    """
    if payload.status in LOCKED_STATUSES:
        raise ValidationError(f"Status {payload.status} is set by the approval workflow",
                              details={'status': payload.status})

    section_key = payload.section

    with transaction() as db:
        inspection = load_inspection_for(db, payload.inspection_id, caller)
        ensure_editable(inspection)

        template, sections = load_template_sections(db, inspection, required=False)
        order = section_order(sections)

        if template is not None:
            section = _require_section(sections, section_key)
            index = order.index(section_key)
            total = len(order)
            is_last = index == total - 1
            progress = compute_progress(index, total)
            fields = section.fields
        else:
            # No template: accept the caller's position, no order enforcement
            index = payload.section_index or 0
            total = 1
            is_last = False
            progress = (payload.progress if payload.progress is not None
                        else compute_progress(index, total))
            fields = None

        is_completion = (payload.status == SUBMITTED
                         or (is_last and payload.section_status == 'COMPLETED'))

        raw = payload.raw_section_answers()
        metadata = answer_store.extract_metadata(raw, payload.is_first_section)
        remarks = answer_store.extract_remarks(raw)
        signatures = answer_store.extract_signatures(raw)
        answers = normalize_section_answers(raw, fields)

        if is_completion:
            result = compact(db, inspection['id'], section_key, answers, caller.user_id,
                             metadata=metadata, remarks=remarks, signatures=signatures)
        else:
            result = answer_store.save_section(
                db, inspection['id'], section_key, answers, caller.user_id,
                metadata=metadata, remarks=remarks, signatures=signatures,
                prior_record_id=payload.answer_id)

        transition = plan_transition(inspection, progress, is_last, is_completion)
        apply_transition(db, inspection['id'], transition, caller.user_id)

        log_audit(db, inspection['org_id'], 'inspection', inspection['id'],
                  'inspection_completed' if is_completion else 'section_saved',
                  old_value=transition.old_status, new_value=transition.status,
                  user_id=caller.user_id,
                  metadata={
                      'section': section_key,
                      'sectionIndex': index,
                      'answerId': result.record_id,
                      'didCreate': result.did_create,
                      'status': transition.status,
                      'progress': transition.progress,
                      'isCompletion': is_completion,
                      'hasMetadata': metadata is not None,
                  })

        completed = completed_sections(db, inspection['id'], order)

    logger.info("Saved section '%s' of inspection %s (%s, %d%%)", section_key,
                inspection['id'], transition.status, transition.progress)

    nxt = next_section(order, section_key) if order else None

    return {
        'inspectionId': inspection['id'],
        'answerId': result.record_id,
        'didCreate': result.did_create,
        'section': section_key,
        'sectionIndex': index,
        'status': transition.status,
        'progress': transition.progress,
        'completedAt': transition.completed_at,
        'answeredAt': result.answered_at,
        'metadata': metadata,
        'isCompletion': is_completion,
        'isLastSection': is_last,
        'isFirstSection': payload.is_first_section,
        'nextSection': nxt,
        'sectionOrder': order or [section_key],
        'currentSectionIndex': index,
        'totalSections': total,
        'completedSections': completed,
        'hasTemplate': template is not None,
        'navigation': _navigation(order, section_key),
    }


def confirm_section(inspection_id, section_key, caller: CallerIdentity) -> dict:
    """Mark a section reviewed. Answer content is left untouched."""
    now = datetime.now(timezone.utc).isoformat()

    with transaction() as db:
        inspection = load_inspection_for(db, inspection_id, caller)
        ensure_editable(inspection)
        _, sections = _template_sections(db, inspection)
        _require_section(sections, section_key)
        order = section_order(sections)
        index = order.index(section_key)
        is_last = index == len(order) - 1

        db.execute("""
            INSERT INTO section_confirmation
            (inspection_id, section_key, confirmed_by, confirmed_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (inspection_id, section_key)
            DO UPDATE SET confirmed_by = excluded.confirmed_by,
                          confirmed_at = excluded.confirmed_at
        """, [inspection['id'], section_key, caller.user_id, now])

        transition = plan_transition(inspection, compute_progress(index, len(order)),
                                     is_last, False)
        apply_transition(db, inspection['id'], transition, caller.user_id)

        log_audit(db, inspection['org_id'], 'inspection', inspection['id'],
                  'section_confirmed',
                  old_value=transition.old_status, new_value=transition.status,
                  user_id=caller.user_id,
                  metadata={
                      'section': section_key,
                      'confirmed': True,
                      'status': transition.status,
                      'progress': transition.progress,
                      'isLastSection': is_last,
                  })

    logger.info("Confirmed section '%s' of inspection %s", section_key, inspection['id'])

    return {
        'inspectionId': inspection['id'],
        'section': section_key,
        'confirmedAt': now,
        'nextSection': next_section(order, section_key),
        'isLastSection': is_last,
        'isInspectionComplete': is_last,
        'sectionOrder': order,
        'currentIndex': index,
        'totalSections': len(order),
        'progress': _progress_block(index, len(order)),
        'inspection': {
            'status': transition.status,
            'progress': transition.progress,
            'completedAt': transition.completed_at,
        },
    }


def save_signatures(inspection_id, signatures: dict, caller: CallerIdentity) -> dict:
    with transaction() as db:
        inspection = load_inspection_for(db, inspection_id, caller)
        ensure_editable(inspection)
        result = answer_store.save_signatures(db, inspection['id'], signatures, caller.user_id)

        log_audit(db, inspection['org_id'], 'inspection', inspection['id'],
                  'signatures_saved',
                  old_value=inspection['status'], new_value=inspection['status'],
                  user_id=caller.user_id,
                  metadata={
                      'answerId': result.record_id,
                      'signers': sorted(signatures.keys()),
                      'status': inspection['status'],
                      'progress': inspection['progress'],
                  })

    return {
        'inspectionId': inspection['id'],
        'answerId': result.record_id,
        'signatures': result.document.signatures,
        'savedAt': result.answered_at,
    }
