from dotenv import load_dotenv
from pathlib import Path
import os
import logging
import logging.config
import logging.handlers
from urllib.parse import quote_plus

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent

LOG_PATH = os.environ.get("LOG_PATH")

LOGGING_CONFIG = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '%(levelname)s %(asctime)s %(name)s %(process)d %(thread)d %(message)s',
        },
        'simple': {
            'format': '%(levelname)s %(message)s',
        },
    },
    'handlers': {
        'console': {
            'level': os.environ.get("LOG_LEVEL", "INFO"),
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        '': {
            'handlers': ['console'],
            'level': os.environ.get("LOG_LEVEL", "INFO"),
            'propagate': False,
        },
    },
}

if LOG_PATH:
    LOGGING_CONFIG['handlers']['main_file'] = {
        'level': 'INFO',
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': LOG_PATH,
        'formatter': 'verbose',
        'encoding': 'utf-8',
        'maxBytes': 10*1024*1024,
        'backupCount': 5,
    }
    LOGGING_CONFIG['loggers']['']['handlers'].append('main_file')

logging.config.dictConfig(LOGGING_CONFIG)

DB_CFG = {
    'db_user': quote_plus(os.getenv('DB_USER', 'coach')),
    'db_password': quote_plus(os.getenv('DB_PASSWORD', '')),
    'db_name': os.getenv('DB_NAME', 'coaching_planner'),
    'db_host': os.getenv('DB_HOST', '127.0.0.1'),
    'db_port': os.getenv('DB_PORT', '5432'),
}

DATABASE_URL = os.getenv(
    'DATABASE_URL',
    "postgresql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}".format(**DB_CFG)
)

# Embedded offline mirror of habits / habit completions
LOCAL_CACHE_URL = os.getenv('LOCAL_CACHE_URL', f"sqlite:///{BASE_DIR / 'local_cache.db'}")

MEDIA_ROOT = os.getenv('MEDIA_ROOT', str(BASE_DIR / 'media'))
MEDIA_URL = os.getenv('MEDIA_URL', '/media')

OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')

TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN')

# Day boundaries, reminders and rollover are computed in this offset (UTC+3 by default)
TIMEZONE_OFFSET_HOURS = int(os.getenv('TIMEZONE_OFFSET_HOURS', '3'))

# A failed write is parked for reconciliation after this many flushes
OUTBOX_MAX_ATTEMPTS = int(os.getenv('OUTBOX_MAX_ATTEMPTS', '1'))

DRAG_ACTIVATION_DISTANCE = float(os.getenv('DRAG_ACTIVATION_DISTANCE', '8'))
DRAG_LONG_PRESS_DELAY = float(os.getenv('DRAG_LONG_PRESS_DELAY', '0.25'))
DRAG_LONG_PRESS_TOLERANCE = float(os.getenv('DRAG_LONG_PRESS_TOLERANCE', '5'))

# Top-level task plus one level of children
MAX_TASK_DEPTH = int(os.getenv('MAX_TASK_DEPTH', '2'))

API_PORT = int(os.getenv('PORT', '8000'))
