"""
Completion compactor.

When the last section is confirmed, every answer record of the inspection
is folded into one final record. The final row is written first (update in
place if one exists, insert otherwise), then every other row is deleted by
id. Both happen in the caller's transaction, and the partial unique index
on section_answer keeps a single final row per inspection.
"""
import logging

from inspection_sections.models import FinalAnswerDoc, load_answer_doc
from inspection_sections.services.answer_store import (
    SaveResult,
    insert_record,
    list_records,
    update_record,
)

logger = logging.getLogger(__name__)


def fold_documents(docs, section_key=None, section_answers=None,
                   metadata=None, remarks=None, signatures=None) -> FinalAnswerDoc:
    """
    Fold answer documents, oldest first, into one final document.

    Later documents win per section key. The first metadata block seen is
    kept; the current save's metadata only fills in when none was stored.
    The section being saved is folded last and always wins for its key.
    """
    data = {}
    folded_metadata = None
    folded_remarks = None
    folded_signatures = None

    for doc in docs:
        for key, answers in doc.data.items():
            data[key] = answers
        if folded_metadata is None and doc.metadata:
            folded_metadata = doc.metadata
        if doc.remarks is not None:
            folded_remarks = doc.remarks
        if doc.signatures:
            folded_signatures = {**(folded_signatures or {}), **doc.signatures}

    if section_key is not None:
        data[section_key] = dict(section_answers or {})
    if folded_metadata is None and metadata:
        folded_metadata = metadata
    if remarks is not None:
        folded_remarks = remarks
    if signatures:
        folded_signatures = {**(folded_signatures or {}), **signatures}

    return FinalAnswerDoc(
        data=data,
        metadata=folded_metadata,
        remarks=folded_remarks,
        signatures=folded_signatures,
    )


def compact(db, inspection_id: str, section_key: str, section_answers: dict,
            user_id: str, metadata=None, remarks=None, signatures=None) -> SaveResult:
    """
    Fold all records of an inspection plus the current section into the
    single final record. Must run inside a transaction.
    """
    records = list_records(db, inspection_id)
    docs = [load_answer_doc(r['answers']) for r in records]

    final_doc = fold_documents(docs, section_key, section_answers,
                               metadata, remarks, signatures)

    existing_final = next((r for r in records if r['is_final']), None)
    if existing_final is not None:
        record_id = existing_final['id']
        answered_at = update_record(db, record_id, inspection_id, final_doc, user_id)
        did_create = False
    else:
        record_id, answered_at = insert_record(db, inspection_id, final_doc, user_id)
        did_create = True

    db.execute(
        "DELETE FROM section_answer WHERE inspection_id = ? AND id != ?",
        [inspection_id, record_id]
    )

    logger.info("Compacted %d answer record(s) of inspection %s into %s (%d section(s))",
                len(records), inspection_id, record_id, len(final_doc.data))

    return SaveResult(record_id, did_create, final_doc, answered_at)
