"""
config.py
~~~~~~~~~

Environment-driven settings and logging setup shared by the API server
and the command line tool.

Recognized environment variables:

- LOG_LEVEL: logging level name (default INFO)
- FLASK_ENV: 'production' quiets third-party loggers
- PORT: HTTP port of the API server (default 8000)
- MNIST_DIR: directory with the MNIST files (default 'data')
"""

import os
import logging
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_NOISY_LOGGERS = ['socketio', 'engineio', 'engineio.server',
                  'socketio.server', 'werkzeug']


def is_production() -> bool:
    return os.getenv('FLASK_ENV') == 'production'


def get_port() -> int:
    return int(os.environ.get('PORT', 8000))


def get_mnist_dir() -> str:
    return os.environ.get('MNIST_DIR', 'data')


def configure_logging(level: Optional[str] = None) -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging

    Args:
        level: Level name overriding LOG_LEVEL
    """
    log_level_str = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(level=log_level, format=LOG_FORMAT)

    if is_production():
        for logger_name in _NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        # Keep our logs at INFO level for visibility in production
        logging.getLogger('feedforward').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
