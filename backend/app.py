"""
Quote Hub API - Flask application for agency budget quoting

This is the main entry point for the Quote Hub backend. It serves the budget
engine behind the quoting screens: rate cards, the phase/stage/department/role
plan, cascading recalculation, totals with the resourcing fee, and the
resource schedule derived for project management.

Features:
- Quote CRUD over a key/value storage table
- Rate card re-pricing and stage duration cascades
- Phase, department and grand totals with the 1.5% resourcing fee
- Resource assignments derived from the plan, with monthly load reporting
- Autosaving edit sessions (debounced and periodic writes)
- Rate limiting and CORS
- Database migrations via Flask-Migrate

Environment Variables:
- FLASK_ENV: development/production/testing (config name used by `python app.py`)
- PORT: Port for `python app.py` (default 5002)
- LOG_LEVEL: Log level of the app and engine loggers
- DATABASE_URL: Database connection string
- SECRET_KEY: Flask secret key
- CORS_ORIGINS: Allowed CORS origins
- DEFAULT_RATE_CARD / DEFAULT_CURRENCY: Defaults for new quotes
- AUTOSAVE_DEBOUNCE_SECONDS / AUTOSAVE_INTERVAL_SECONDS: Edit session save timers
- SEED_SAMPLE_DATA: Seed a sample quote into an empty store

Usage:
    python app.py

Or with Gunicorn (production):
    gunicorn "app:create_app('production')" --bind 0.0.0.0:8000
"""
import atexit
import logging
import os

from flask import Flask, jsonify, current_app, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from config import config
from db import db
from errors import register_error_handlers
from quotes import SessionRegistry

# Module loggers of the budget engine, routed through the app's handler
ENGINE_LOGGERS = ['rates', 'costing', 'engine', 'resources', 'autosave', 'quotes', 'storage']


def configure_logging(app, config_name='development'):
    """Configure logging for the application and the engine modules"""
    for handler in app.logger.handlers[:]:
        app.logger.removeHandler(handler)

    default_level = 'INFO' if app.config.get('DEBUG', False) else 'WARNING'
    log_level = getattr(logging, str(app.config.get('LOG_LEVEL') or default_level).upper(), logging.WARNING)
    app.logger.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    app.logger.addHandler(console_handler)

    for name in ENGINE_LOGGERS:
        module_logger = logging.getLogger(name)
        module_logger.setLevel(log_level)
        module_logger.handlers = [console_handler]

    app.logger.info(f"Quote Hub API starting in {config_name} mode")


def register_edit_sessions(app):
    """
    Install the registry of autosaving edit sessions on the app.

    Unsaved session state is written when the process exits.
    """
    registry = SessionRegistry()
    app.extensions['quote_sessions'] = registry
    atexit.register(registry.close_all)
    app.logger.info(
        f"Autosave debounce {app.config['AUTOSAVE_DEBOUNCE_SECONDS']}s, "
        f"interval {app.config['AUTOSAVE_INTERVAL_SECONDS']}s"
    )
    return registry


def register_request_logging(app):
    @app.before_request
    def log_request_info():
        if request.path == '/api/health':
            return
        quote_id = (request.view_args or {}).get('quote_id')
        suffix = f" [quote {quote_id}]" if quote_id else ''
        current_app.logger.info(f'{request.method} {request.path}{suffix} - {request.remote_addr}')

    @app.after_request
    def log_response_info(response):
        if response.status_code >= 500:
            current_app.logger.warning(f'Response: {response.status_code} for {request.method} {request.path}')
        elif request.path != '/api/health':
            current_app.logger.info(f'Response: {response.status_code}')
        return response


def create_app(config_name='development'):
    """Application factory pattern"""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    configure_logging(app, config_name)

    db.init_app(app)
    CORS(app, origins=app.config['CORS_ORIGINS'])

    Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=[app.config.get('RATELIMIT_DEFAULT') or "2000 per hour"]
    )

    Migrate(app, db)
    register_error_handlers(app)
    register_edit_sessions(app)
    register_request_logging(app)

    @app.route('/api/health', methods=['GET'])
    def health_check():
        """Health check endpoint to verify API is running"""
        from rates import list_rate_cards
        return jsonify({
            'status': 'healthy',
            'message': 'Quote Hub API is running',
            'default_rate_card': current_app.config['DEFAULT_RATE_CARD'],
            'rate_cards': len(list_rate_cards()),
            'open_edit_sessions': len(current_app.extensions['quote_sessions'])
        })

    # Create the storage table, optionally with a sample quote
    with app.app_context():
        from database import init_db, seed_database
        init_db()
        if app.config.get('SEED_SAMPLE_DATA'):
            seed_database()

    from routes import api
    app.register_blueprint(api, url_prefix='/api')

    return app

if __name__ == '__main__':
    app = create_app(os.environ.get('FLASK_ENV', 'development'))
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5002)), debug=app.config.get('DEBUG', False))
