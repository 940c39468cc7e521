"""
Activity Tracker Flask Application.

Serves the lifecycle status read and the operator actions. The sync,
notification and removal jobs are not run here; they are cron-triggered
through the CLI (see activity_tracker.cli).

Usage:
    python -m activity_tracker.app

Or with gunicorn:
    gunicorn 'activity_tracker.app:create_app()'
"""

import logging
import os
from typing import Dict, Optional

from flask import Flask
from flask_cors import CORS

from activity_tracker.api import subjects_bp
from activity_tracker.config import config
from activity_tracker.lifecycle.trackers import Tracker, build_trackers
from activity_tracker.models import init_db
from activity_tracker.models.base import SessionFactory

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)
logger = logging.getLogger(__name__)


def create_app(
    session_factory: Optional[SessionFactory] = None,
    trackers: Optional[Dict[str, Tracker]] = None,
    init_database: bool = True,
) -> Flask:
    """
    Application factory for Flask.

    Args:
        session_factory: Database session factory (SessionLocal if None)
        trackers: Tracker instances by kind (built from config if None)
        init_database: Create tables on startup. Set to False for testing
                       with an already initialized database.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = config.secret_key
    app.config['SESSION_FACTORY'] = session_factory
    app.config['TRACKERS'] = trackers if trackers is not None else build_trackers()

    # Enable CORS for API endpoints
    CORS(app, resources={r'/api/*': {'origins': '*'}})

    if init_database:
        logger.info('Initializing database...')
        init_db()

    # Register API blueprints
    app.register_blueprint(subjects_bp)

    @app.route('/health')
    def health():
        """Simple health check endpoint."""
        return {'status': 'ok'}

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.errorhandler(404)
    def not_found(e):
        return {'error': 'Not found'}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f'Server error: {e}')
        return {'error': 'Internal server error'}, 500

    return app


def run_development_server():
    """Run the development server."""
    app = create_app()

    port = int(os.environ.get('PORT', 5000))
    logger.info(f'Starting Activity Tracker on http://localhost:{port}')

    app.run(
        host='0.0.0.0',
        port=port,
        debug=config.debug,
        use_reloader=False,
    )


if __name__ == '__main__':
    run_development_server()
