import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


def configure_logging(app):
    """Configure application logging"""

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'backsync.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    app.logger.addHandler(console_handler)
    app.logger.addHandler(file_handler)

    # Keep SDK request logging out of the backup log
    for noisy in ('boto3', 'botocore', 'urllib3', 's3transfer', 'dropbox'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, overrides=None):
    """
    Flask application factory.

    Args:
        config_name: Key of the config dictionary ('development', 'production', 'testing')
        overrides: Optional mapping applied on top of the selected config

    Raises:
        ConfigurationError: If storage credentials or settings are invalid
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from backsync.config import config, SyncSettings
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    # Configure logging
    configure_logging(app)

    # Fail fast on missing credentials, before any run is attempted
    settings = SyncSettings.from_config(app.config)
    app.extensions['backsync'] = settings

    # Provider-specific checks (S3 bucket and part size, Dropbox refresh token)
    from backsync.backup import create_gateway
    create_gateway(settings)
    app.logger.info(
        f"Storage provider: {settings.provider}, upload folder: {settings.upload_folder or '/'}, "
        f"credentials: {type(settings.credentials).__name__}"
    )

    from backsync.cli import backup_cli
    app.cli.add_command(backup_cli)

    from backsync.scheduler import (
        get_scheduled_jobs,
        init_scheduler,
        is_scheduler_running,
        start_scheduler,
        stop_scheduler
    )

    # Health check endpoint
    @app.route('/health')
    def health():
        return {
            'status': 'healthy',
            'scheduler_running': is_scheduler_running(),
            'jobs': get_scheduled_jobs()
        }, 200

    # Determine if this process should run scheduled syncs
    is_reloader_parent = app.config.get('DEBUG', False) and os.environ.get('WERKZEUG_RUN_MAIN') != 'true'

    if app.config.get('SCHEDULER_ENABLED') and not is_reloader_parent:
        import atexit

        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)
        start_scheduler()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(stop_scheduler)
    else:
        app.logger.info("Scheduler initialization skipped in this process")

    return app
