"""
Answer record routes - direct lookup of a stored answer record.
"""
from flask import Blueprint, jsonify

from inspection_sections.auth import require_auth
from inspection_sections.services import section_service

answers_bp = Blueprint('answers', __name__, url_prefix='/api/inspection-answers')


@answers_bp.route('/<answer_id>')
@require_auth
def get_answer(answer_id, caller):
    data = section_service.get_answer_record(answer_id, caller)
    return jsonify({'message': 'Inspection answer retrieved', 'data': data})
