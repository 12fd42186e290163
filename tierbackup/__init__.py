import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '0.1.0'


def configure_logging(config_obj, log_to_file=True):
    """Configure application logging"""

    # Set log level based on environment
    log_level = logging.DEBUG if getattr(config_obj, 'DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    if log_to_file:
        log_dir = config_obj.LOG_DIR
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'tierbackup.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Quieten botocore request logging in debug mode
    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('boto3').setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")
