"""
Section answer store.

Every save writes into an answer record for the inspection. A save merges
the new section into the target record's document and leaves every other
section as it was; a later save of one section never drops another.
"""
import logging
from datetime import datetime, timezone
from typing import NamedTuple, Optional

from inspection_sections.errors import NotFound
from inspection_sections.models import (
    METADATA_FIELDS,
    FinalAnswerDoc,
    PartialAnswerDoc,
    dump_answer_doc,
    load_answer_doc,
)
from inspection_sections.utils import generate_id

logger = logging.getLogger(__name__)


class SaveResult(NamedTuple):
    record_id: str
    did_create: bool
    document: object
    answered_at: str


# ============================================================
# RAW ANSWER EXTRACTION
# ============================================================

def extract_metadata(raw_answers: dict, is_first_section: bool) -> Optional[dict]:
    """
    Pull inspection-level metadata out of the first section's answers.

    Removes the metadata keys from raw_answers in place so they never end
    up in the section's field map.
    """
    if not is_first_section:
        return None

    metadata = {}
    for name in METADATA_FIELDS:
        if name in raw_answers:
            metadata[name] = raw_answers.pop(name)
    return metadata or None


def extract_remarks(raw_answers: dict):
    """Free-text remarks may ride along with any section."""
    remarks = None
    remarks_field = raw_answers.get('remarks_field')
    if isinstance(remarks_field, dict) and remarks_field.get('comment'):
        remarks = remarks_field['comment']
        raw_answers.pop('remarks_field')
    if raw_answers.get('remarks'):
        remarks = raw_answers.pop('remarks')
    return remarks


def extract_signatures(raw_answers: dict):
    signatures = raw_answers.get('signatures')
    if isinstance(signatures, dict):
        return raw_answers.pop('signatures')
    return None


# ============================================================
# DOCUMENT MERGE
# ============================================================

def merge_section(doc, section_key: str, answers: dict,
                  metadata=None, remarks=None, signatures=None):
    """
    Return a copy of doc with section_key replaced by answers.

    Section content is replaced wholesale; all other sections are kept.
    Metadata and signatures merge key-wise, remarks are replaced. The
    document keeps its kind, so a final record stays final.
    """
    data = dict(doc.data)
    data[section_key] = dict(answers)

    merged_metadata = doc.metadata
    if metadata:
        merged_metadata = {**(doc.metadata or {}), **metadata}

    merged_signatures = doc.signatures
    if signatures:
        merged_signatures = {**(doc.signatures or {}), **signatures}

    return doc.model_copy(update={
        'data': data,
        'metadata': merged_metadata,
        'remarks': remarks if remarks is not None else doc.remarks,
        'signatures': merged_signatures,
    })


def new_document(section_key: str, answers: dict,
                 metadata=None, remarks=None, signatures=None) -> PartialAnswerDoc:
    return PartialAnswerDoc(
        data={section_key: dict(answers)},
        metadata=metadata,
        remarks=remarks,
        signatures=signatures,
    )


# ============================================================
# RECORD ACCESS
# ============================================================

def list_records(db, inspection_id: str) -> list:
    """All answer records for an inspection, oldest write first."""
    return db.execute("""
        SELECT id, inspection_id, answers, is_final, write_seq,
               answered_by, answered_at
        FROM section_answer
        WHERE inspection_id = ?
        ORDER BY write_seq
    """, [inspection_id]).fetchall()


def get_record(db, record_id: str):
    return db.execute("""
        SELECT id, inspection_id, answers, is_final, write_seq,
               answered_by, answered_at
        FROM section_answer WHERE id = ?
    """, [record_id]).fetchone()


def latest_record(db, inspection_id: str):
    return db.execute("""
        SELECT id, inspection_id, answers, is_final, write_seq,
               answered_by, answered_at
        FROM section_answer
        WHERE inspection_id = ?
        ORDER BY write_seq DESC LIMIT 1
    """, [inspection_id]).fetchone()


def next_write_seq(db, inspection_id: str) -> int:
    row = db.execute(
        "SELECT COALESCE(MAX(write_seq), 0) + 1 AS seq FROM section_answer WHERE inspection_id = ?",
        [inspection_id]
    ).fetchone()
    return row['seq']


def insert_record(db, inspection_id: str, doc, user_id: str) -> tuple:
    record_id = generate_id('ans')
    now = datetime.now(timezone.utc).isoformat()
    db.execute("""
        INSERT INTO section_answer
        (id, inspection_id, answers, is_final, write_seq, answered_by, answered_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
    """, [record_id, inspection_id, dump_answer_doc(doc),
          1 if isinstance(doc, FinalAnswerDoc) else 0,
          next_write_seq(db, inspection_id), user_id, now])
    return record_id, now


def update_record(db, record_id: str, inspection_id: str, doc, user_id: str) -> str:
    now = datetime.now(timezone.utc).isoformat()
    db.execute("""
        UPDATE section_answer
        SET answers = ?, is_final = ?, write_seq = ?, answered_by = ?, answered_at = ?
        WHERE id = ?
    """, [dump_answer_doc(doc),
          1 if isinstance(doc, FinalAnswerDoc) else 0,
          next_write_seq(db, inspection_id), user_id, now, record_id])
    return now


def resolve_target(db, inspection_id: str, prior_record_id=None):
    """
    Pick the record a save merges into.

    An explicit prior record wins when it belongs to this inspection;
    otherwise the most recently written record is used.
    """
    if prior_record_id:
        found = get_record(db, prior_record_id)
        if found is not None and found['inspection_id'] == inspection_id:
            return found
        logger.warning("Answer record %s not found for inspection %s, using latest",
                       prior_record_id, inspection_id)
    return latest_record(db, inspection_id)


def latest_section_answers(db, inspection_id: str, section_key: str):
    """
    The saved answers for one section from the newest record holding it.

    Returns (record_row, SectionAnswerMap), or (None, {}) if the section
    was never saved.
    """
    for record in reversed(list_records(db, inspection_id)):
        doc = load_answer_doc(record['answers'])
        if section_key in doc.data:
            return record, doc.data[section_key]
    return None, {}


# ============================================================
# SAVE
# ============================================================

def save_section(db, inspection_id: str, section_key: str, answers: dict,
                 user_id: str, metadata=None, remarks=None, signatures=None,
                 prior_record_id=None) -> SaveResult:
    """
    Persist one section's normalized answers.

    answers is the SectionAnswerMap produced by the field normalizer.
    Must run inside a transaction.
    """
    target = resolve_target(db, inspection_id, prior_record_id)

    if target is None:
        doc = new_document(section_key, answers, metadata, remarks, signatures)
        record_id, answered_at = insert_record(db, inspection_id, doc, user_id)
        logger.info("Created answer record %s for section '%s' of inspection %s",
                    record_id, section_key, inspection_id)
        return SaveResult(record_id, True, doc, answered_at)

    existing = load_answer_doc(target['answers'])
    doc = merge_section(existing, section_key, answers, metadata, remarks, signatures)
    answered_at = update_record(db, target['id'], inspection_id, doc, user_id)
    logger.info("Merged section '%s' into answer record %s of inspection %s",
                section_key, target['id'], inspection_id)
    return SaveResult(target['id'], False, doc, answered_at)


def save_signatures(db, inspection_id: str, signatures: dict, user_id: str) -> SaveResult:
    """Merge a signatures object into the newest record of the inspection."""
    target = latest_record(db, inspection_id)
    if target is None:
        raise NotFound('No answer record found for this inspection. Please save sections first.')

    existing = load_answer_doc(target['answers'])
    doc = existing.model_copy(update={
        'signatures': {**(existing.signatures or {}), **signatures},
    })
    answered_at = update_record(db, target['id'], inspection_id, doc, user_id)
    return SaveResult(target['id'], False, doc, answered_at)
