"""
Section routes - template sections, section answers, review and confirm.
Every endpoint requires an identified caller with access to the inspection.
"""
from flask import Blueprint, jsonify, request

from inspection_sections.auth import require_auth
from inspection_sections.models import SaveSectionRequest, SignaturesRequest, parse_payload
from inspection_sections.services import section_service

sections_bp = Blueprint('sections', __name__, url_prefix='/api/inspections')


def _request_body():
    """JSON body, unwrapping the {"data": {...}} envelope some clients send."""
    body = request.get_json(silent=True)
    if (isinstance(body, dict) and 'inspectionId' not in body
            and isinstance(body.get('data'), dict) and 'inspectionId' in body['data']):
        return body['data']
    return body


# ============================================================
# TEMPLATE / QUESTIONS
# ============================================================

@sections_bp.route('/<inspection_id>/template')
@require_auth
def template_sections(inspection_id, caller):
    data = section_service.get_template_sections(inspection_id, caller)
    return jsonify({'message': 'Template sections retrieved', 'data': data})


@sections_bp.route('/<inspection_id>/section/<section_key>/questions')
@require_auth
def section_questions(inspection_id, section_key, caller):
    data = section_service.get_section_questions(inspection_id, section_key, caller)
    return jsonify({'message': f"Questions for section '{section_key}'", 'data': data})


@sections_bp.route('/<inspection_id>/section/<section_key>/review')
@require_auth
def section_review(inspection_id, section_key, caller):
    data = section_service.get_section_review(inspection_id, section_key, caller)
    return jsonify({'message': f"Review for section '{section_key}'", 'data': data})


# ============================================================
# ANSWERS
# ============================================================

@sections_bp.route('/section-answers', methods=['POST'])
@require_auth
def save_section_answers(caller):
    payload = parse_payload(SaveSectionRequest, _request_body())
    data = section_service.save_section_answers(payload, caller)

    if data['isCompletion']:
        message = 'Inspection completed and answers finalized'
    else:
        message = f"Section '{data['section']}' answers saved"

    response = jsonify({'message': message, 'data': data})
    if data['didCreate']:
        response.status_code = 201
        response.headers['Location'] = f"/api/inspection-answers/{data['answerId']}"
    return response


@sections_bp.route('/<inspection_id>/section-answers')
@require_auth
def section_answers_summary(inspection_id, caller):
    data = section_service.get_section_answers_summary(inspection_id, caller)
    return jsonify({'message': 'Section answers retrieved', 'data': data})


@sections_bp.route('/<inspection_id>/latest-answer-id')
@require_auth
def latest_answer_id(inspection_id, caller):
    data = section_service.get_latest_answer_id(inspection_id, caller)
    return jsonify({'message': 'Latest answer ID retrieved', 'data': data})


@sections_bp.route('/<inspection_id>/signatures', methods=['POST'])
@require_auth
def save_signatures(inspection_id, caller):
    payload = parse_payload(SignaturesRequest, _request_body())
    data = section_service.save_signatures(inspection_id, payload.signatures, caller)
    return jsonify({'message': 'Signatures saved', 'data': data})


# ============================================================
# NAVIGATION / CONFIRMATION
# ============================================================

@sections_bp.route('/<inspection_id>/section/<section_key>/confirm', methods=['POST'])
@require_auth
def confirm_section(inspection_id, section_key, caller):
    data = section_service.confirm_section(inspection_id, section_key, caller)
    return jsonify({'message': f"Section '{section_key}' confirmed", 'data': data})


@sections_bp.route('/<inspection_id>/next-section/<section_key>')
@require_auth
def next_section(inspection_id, section_key, caller):
    data = section_service.get_next_section(inspection_id, section_key, caller)
    return jsonify({'message': 'Next section retrieved', 'data': data})


@sections_bp.route('/<inspection_id>/section-status')
@require_auth
def section_status(inspection_id, caller):
    data = section_service.get_section_status(inspection_id, caller)
    return jsonify({'message': 'Section status retrieved', 'data': data})
