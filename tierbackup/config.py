import os


def _env_bool(name, default='false'):
    return os.environ.get(name, default).lower() == 'true'


class Config:
    """Base configuration"""

    DEBUG = False

    # Backup source and destination
    BACKUP_S3_BUCKET = os.environ.get('BACKUP_S3_BUCKET')
    BACKUP_S3_PATH = os.environ.get('BACKUP_S3_PATH') or 'backups'
    BACKUP_DATA_DIRECTORY = os.environ.get('BACKUP_DATA_DIRECTORY') or '/data'
    # Defaults to {system temp}/backups when unset
    BACKUP_WORK_DIRECTORY = os.environ.get('BACKUP_WORK_DIRECTORY')
    BACKUP_WRITE_MARKER_FILE = _env_bool('BACKUP_WRITE_MARKER_FILE')

    # Retention (number of archives kept per backup type)
    BACKUP_HOURLY_COUNT = os.environ.get('BACKUP_HOURLY_COUNT', '24')
    BACKUP_DAILY_COUNT = os.environ.get('BACKUP_DAILY_COUNT', '7')
    BACKUP_WEEKLY_COUNT = os.environ.get('BACKUP_WEEKLY_COUNT', '4')
    BACKUP_MONTHLY_COUNT = os.environ.get('BACKUP_MONTHLY_COUNT', '12')

    # AWS
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')
    AWS_REGION = os.environ.get('AWS_REGION') or 'us-east-1'
    AWS_ENDPOINT_URL = os.environ.get('AWS_ENDPOINT_URL')

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Scheduler
    SCHEDULER_TIMEZONE = 'UTC'
    BACKUP_HOURLY_CRON = os.environ.get('BACKUP_HOURLY_CRON') or '5 * * * *'
    BACKUP_DAILY_CRON = os.environ.get('BACKUP_DAILY_CRON') or '15 0 * * *'
    BACKUP_WEEKLY_CRON = os.environ.get('BACKUP_WEEKLY_CRON') or '30 0 * * 0'
    BACKUP_MONTHLY_CRON = os.environ.get('BACKUP_MONTHLY_CRON') or '45 0 1 * *'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_DATA_DIRECTORY = os.environ.get('BACKUP_DATA_DIRECTORY') or os.path.join(DATA_DIR, 'source')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
