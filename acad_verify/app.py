"""
ACAD - Certificate Verification API

Thin Flask surface over the verification pipeline. Authentication and the
dashboard live elsewhere; the caller is identified by the ``X-Caller-Id``
header set by the gateway in front of this service.
"""

import base64
import logging
from datetime import datetime

from flask import Flask, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .config import ALLOWED_MIME_TYPES, Settings
from .diagnostics import run_checks
from .history import DEFAULT_HISTORY_LIMIT, VerificationHistoryRecorder
from .pipeline import VerificationPipeline
from .rasterizer import normalize_mime_type

logger = logging.getLogger(__name__)

CALLER_HEADER = 'X-Caller-Id'


def _caller_id():
    """Caller from the gateway header; None for anonymous requests, which keep no history"""
    return (request.headers.get(CALLER_HEADER) or '').strip() or None


def create_app(settings=None, pipeline=None, history=None):
    """Application factory"""
    settings = settings or Settings.from_env()
    if history is None:
        history = pipeline.history if pipeline is not None and pipeline.history else \
            VerificationHistoryRecorder(settings.database_url)
    if pipeline is None:
        pipeline = VerificationPipeline.from_settings(settings, history=history)

    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = settings.max_content_length
    app.config['DATABASE_URL'] = settings.database_url
    app.config['RECORD_API_URL'] = settings.record_api_url
    app.config['RECORD_FETCH_TIMEOUT'] = settings.record_fetch_timeout
    app.config['PDF_RENDER_SCALE'] = settings.pdf_render_scale
    app.extensions['acad_pipeline'] = pipeline
    app.extensions['acad_history'] = history

    @app.route('/verify', methods=['POST'])
    def verify():
        """Verify an uploaded certificate or a bare certificate ID"""
        caller_id = _caller_id()

        if 'file' in request.files:
            file = request.files['file']
            if not file.filename:
                return jsonify({'error': 'No file selected'}), 400

            mime = normalize_mime_type(file.mimetype)
            if mime not in ALLOWED_MIME_TYPES:
                return jsonify({'error': 'Invalid file type. Only JPG, PNG, WebP and PDF are supported.'}), 400

            document = file.read()
            logger.info(f"Received {file.filename} ({len(document)} bytes) "
                        f"from {caller_id or 'an anonymous caller'}")
            result = pipeline.verify_document(document, mime, filename=file.filename, caller_id=caller_id)

            if result.manual_entry_required:
                return jsonify({
                    'status': 'manual_entry_required',
                    'message': 'No digital ID found in document. Please enter ID manually.',
                })

            response = {
                'status': 'success',
                'source': result.extraction.source,
                'verdict': result.verdict.to_dict(),
            }
            if request.args.get('preview') and result.preview_image:
                response['preview'] = {
                    'mimeType': result.preview_mime,
                    'data': base64.b64encode(result.preview_image).decode(),
                }
            return jsonify(response)

        body = request.get_json(silent=True) or {}
        identifier = (request.form.get('id') or body.get('id') or '').strip()
        if not identifier:
            return jsonify({'error': 'Please enter a certificate ID'}), 400

        verdict = pipeline.verify_identifier(identifier, caller_id=caller_id)
        return jsonify({'status': 'success', 'source': 'manual', 'verdict': verdict.to_dict()})

    @app.route('/history')
    def get_history():
        """Caller's verification history, newest first"""
        try:
            limit = int(request.args.get('limit', DEFAULT_HISTORY_LIMIT))
        except ValueError:
            return jsonify({'error': 'limit must be an integer'}), 400
        limit = max(1, min(limit, 500))

        caller_id = _caller_id()
        if caller_id is None:
            return jsonify({'history': []})
        entries = history.entries(caller_id, limit=limit)
        return jsonify({'history': [entry.to_dict() for entry in entries]})

    @app.route('/health')
    def health():
        """System health check"""
        checks = run_checks()
        try:
            total = history.count()
            db_status = 'connected'
        except SQLAlchemyError as e:
            total = 0
            db_status = f"error: {e}"

        return jsonify({
            'status': 'healthy',
            'version': __version__,
            'checks': checks,
            'database_status': db_status,
            'history_entries': total,
            'record_service': settings.record_api_url,
            'timestamp': datetime.now().isoformat(),
        })

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({'error': 'File too large'}), 413

    return app
