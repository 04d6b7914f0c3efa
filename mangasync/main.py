"""
Main entry point for the mangasync service.

Starts the Flask web server and the sync scheduler.
"""

import atexit
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from flask import Flask

from mangasync import __version__
from mangasync.config import ConfigManager, get_config_from_env
from mangasync.db.database import Database, init_db
from mangasync.db.runs import RunRecorder
from mangasync.sync.engine import create_orchestrator_from_config
from mangasync.utils.dates import isoformat, utcnow
from mangasync.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

# Global scheduler
scheduler = BackgroundScheduler()


def create_app(database: Database, config_manager: Optional[ConfigManager] = None) -> Flask:
    """
    Create and configure the Flask application.

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)

    app.extensions['mangasync'] = {
        'database': database,
        'config_manager': config_manager or ConfigManager(database),
    }

    from mangasync.web.routes.api import api_bp
    app.register_blueprint(api_bp)

    # Health check
    @app.route('/health')
    def health():
        return {'status': 'ok', 'version': __version__, 'timestamp': isoformat(utcnow())}

    return app


def run_sync(database: Database, config_manager: ConfigManager) -> None:
    """Run one scheduled sync operation."""
    logger.info("Starting scheduled sync")

    try:
        orchestrator = create_orchestrator_from_config(config_manager, database)
        if not orchestrator:
            logger.warning("Sync engine not configured, skipping sync")
            return

        try:
            report = orchestrator.run()
        finally:
            orchestrator.close()

        RunRecorder(database).record(report, user_id=orchestrator.auth.user_id)
        logger.info(
            "Sync completed",
            run_id=report.run_id,
            status=report.status.value,
            uploaded=report.total("uploaded"),
            downloaded=report.total("downloaded"),
            failed=report.total("failed"),
        )

    except Exception as e:
        logger.exception("Sync failed", error=str(e))


def start_scheduler(database: Database, config_manager: ConfigManager, interval_minutes: int = 60) -> None:
    """
    Start the sync scheduler.

    Args:
        interval_minutes: Sync interval in minutes
    """
    scheduler.add_job(
        run_sync,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[database, config_manager],
        id='sync_job',
        name='Manga Sync',
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()
    logger.info(f"Scheduler started with {interval_minutes} minute interval")

    # Run initial sync right away
    scheduler.add_job(
        run_sync,
        trigger='date',
        args=[database, config_manager],
        id='initial_sync',
    )


def shutdown_scheduler() -> None:
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler shutdown")


def main():
    """Main entry point."""
    config = get_config_from_env()

    setup_logging(config.log_level)

    database = init_db(config.database_url)
    config_manager = ConfigManager(database, env_config=config)

    logger.info(
        "Starting mangasync service",
        version=__version__,
        sync_interval=config.sync_interval_minutes,
    )

    app = create_app(database, config_manager)

    start_scheduler(database, config_manager, config.sync_interval_minutes)

    atexit.register(shutdown_scheduler)
    atexit.register(database.close)

    # Run Flask app with waitress
    from waitress import serve
    serve(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
