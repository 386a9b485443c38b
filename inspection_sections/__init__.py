"""
Inspection Sections - Flask Application Factory
Section-by-section answer capture and compaction for inspections
"""
import logging
import os

from flask import Flask, jsonify

from inspection_sections.errors import SectionError

logger = logging.getLogger(__name__)


def _env_flag(name, default='0'):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def create_app(test_config=None):
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-change-in-prod')
    app.config['DATABASE_PATH'] = os.environ.get('DATABASE_PATH', 'data/inspections.db')
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')
    # Gateway-forwarded identity (X-User-Id / X-Org-Id)
    app.config['TRUST_IDENTITY_HEADERS'] = _env_flag('TRUST_IDENTITY_HEADERS')

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Initialize database
    from inspection_sections.services.db import init_db
    with app.app_context():
        init_db(app)

    # Register blueprints
    from inspection_sections.routes.sections import sections_bp
    from inspection_sections.routes.answers import answers_bp

    app.register_blueprint(sections_bp)
    app.register_blueprint(answers_bp)

    @app.errorhandler(SectionError)
    def handle_section_error(e):
        if e.status_code >= 500:
            logger.error("%s: %s", e.error, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({'error': 'Not Found', 'message': 'Resource not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({'error': 'Method Not Allowed', 'message': str(e.description)}), 405

    @app.errorhandler(500)
    def handle_internal_error(e):
        original = getattr(e, 'original_exception', None)
        if original is not None:
            logger.exception("Unhandled error", exc_info=original)
        return jsonify({'error': 'Internal Server Error',
                        'message': 'An unexpected error occurred'}), 500

    # Health check
    @app.route('/')
    def home():
        return jsonify({'status': 'ok', 'service': 'inspection-sections'})

    return app


# For direct execution
if __name__ == '__main__':
    app = create_app()
    app.run(debug=True, host='0.0.0.0', port=5000)
