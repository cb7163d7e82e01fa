"""
Result Portal Application Factory
"""
import os
from datetime import datetime, timezone

from flask import Flask, jsonify, request
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from config import config

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
csrf = CSRFProtect()


def create_app(config_name='default'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # Services log through "portal.*" loggers, which propagate to app.logger
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)

    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    # Pending extractions, keyed by tempId
    from portal.utils.session_store import TempSessionStore
    store = TempSessionStore(ttl_seconds=app.config['TEMP_SESSION_TTL'])
    app.extensions['temp_sessions'] = store
    if app.config.get('TEMP_SESSION_SWEEP_ENABLED'):
        store.start_sweeper(app.config['TEMP_SESSION_SWEEP_INTERVAL'])

    # Register blueprints
    from portal.auth import auth_bp
    from portal.api import results_bp, analysis_bp
    from portal.admin import admin_bp, students_bp, faculty_bp, subjects_bp

    blueprints = (auth_bp, results_bp, analysis_bp, admin_bp, students_bp, faculty_bp, subjects_bp)
    for bp in blueprints:
        app.register_blueprint(bp)
        # Exempt API routes from CSRF (JSON clients don't send tokens)
        csrf.exempt(bp)

    register_error_handlers(app)

    # Health check endpoint
    @app.route('/healthz')
    def healthz():
        """Health check for load balancers and monitoring"""
        try:
            from sqlalchemy import text
            db.session.execute(text('SELECT 1'))
            db_status = "ok"
        except Exception as e:
            db_status = f"error: {e}"

        if app.config.get('OCR_ENABLED'):
            from portal.services.pdf_service import ocr_ready
            ocr_ok, ocr_msg = ocr_ready()
        else:
            ocr_ok, ocr_msg = False, "disabled"

        return jsonify({
            "status": "ok" if db_status == "ok" else "degraded",
            "version": app.config['APP_VERSION'],
            "database": db_status,
            "ocr_ready": ocr_ok,
            "ocr_message": ocr_msg,
            "pending_extractions": len(store),
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    # Version endpoint
    @app.route('/version')
    def version():
        """Version and build info"""
        return jsonify({
            "version": app.config['APP_VERSION'],
            "build_time": app.config['BUILD_TIME'],
            "git_commit": app.config['GIT_COMMIT'],
            "features": {
                "spatial_extraction": True,
                "ocr_fallback": bool(app.config.get('OCR_ENABLED')),
                "spreadsheet_upload": True,
                "grade_analysis": True,
            }
        })

    # Handle database initialization
    with app.app_context():
        from sqlalchemy import inspect
        from portal import models  # noqa: F401  (register tables)

        if os.getenv('RESET_DB', '').strip() in ('1', 'true', 'yes'):
            reset_database(app)
        else:
            # Only create tables if they don't exist (safe for existing DB)
            inspector = inspect(db.engine)
            if not inspector.get_table_names():
                app.logger.info('No tables found, creating...')
                db.create_all()

    return app


def reset_database(app):
    """Drop everything and recreate the tables (RESET_DB=1)"""
    from sqlalchemy import text

    app.logger.warning('RESET_DB is set - dropping all tables...')
    if db.engine.dialect.name == 'postgresql':
        try:
            db.session.execute(text('DROP SCHEMA public CASCADE'))
            db.session.execute(text('CREATE SCHEMA public'))
            db.session.execute(text('GRANT ALL ON SCHEMA public TO public'))
            db.session.commit()
            app.logger.warning('PostgreSQL schema reset complete')
        except Exception as e:
            db.session.rollback()
            app.logger.warning(f'PostgreSQL reset failed, falling back to drop_all: {e}')
            db.drop_all()
    else:
        db.drop_all()

    db.create_all()
    app.logger.warning('Fresh tables created')


def register_error_handlers(app):
    """JSON envelopes for errors raised under /api/"""
    from portal.utils.responses import error_response

    def wants_json():
        return request.path.startswith('/api/')

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(e):
        limit_mb = (app.config.get('MAX_CONTENT_LENGTH') or 0) // (1024 * 1024)
        return error_response(f"File too large. Maximum size is {limit_mb}MB.", 413)

    @app.errorhandler(404)
    def not_found(e):
        if wants_json():
            return error_response("Resource not found", 404)
        return e

    @app.errorhandler(405)
    def method_not_allowed(e):
        if wants_json():
            return error_response("Method not allowed", 405)
        return e

    @app.errorhandler(Exception)
    def unhandled(e):
        if isinstance(e, HTTPException):
            return e
        db.session.rollback()
        app.logger.exception("Unhandled error on %s", request.path)
        return error_response("Internal server error", 500, error=e)

    @login_manager.unauthorized_handler
    def unauthorized():
        return error_response("Authentication required", 401)
