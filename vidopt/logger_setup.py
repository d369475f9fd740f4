"""
Logging Setup for the delivery optimizer
Initializes logging configuration from YAML file
"""

import os
import copy
import logging
import logging.config
import yaml
from colorama import init, Fore, Style
from typing import Optional

# Initialize colorama for Windows compatibility
init(autoreset=True)

ROOT_LOGGER_NAME = 'vidopt'

DEFAULT_LOGGING_CONFIG = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'detailed': {
            'format': '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'console': {
            'format': '%(asctime)s | %(levelname)-8s | %(message)s',
            'datefmt': '%H:%M:%S'
        }
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'level': 'WARNING',
            'formatter': 'console',
            'stream': 'ext://sys.stderr'
        }
    },
    'loggers': {
        ROOT_LOGGER_NAME: {
            'level': 'DEBUG',
            'handlers': ['console'],
            'propagate': False
        }
    },
    'root': {
        'level': 'WARNING',
        'handlers': ['console']
    }
}


class ColoredFormatter(logging.Formatter):
    """Custom formatter to add colors to console output"""

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA + Style.BRIGHT,
    }

    def format(self, record):
        # Color a copy so file handlers sharing the record see the plain level name
        record = copy.copy(record)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{Style.RESET_ALL}"
        return super().format(record)


def _packaged_logging_config() -> str:
    return os.path.join(os.path.abspath(os.path.dirname(__file__)), 'config', 'logging.yaml')


def setup_logging(config_path: Optional[str] = None, log_level: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration from YAML file

    Args:
        config_path: Path to logging configuration file (packaged default when None)
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    config_path = config_path or _packaged_logging_config()

    try:
        if os.path.exists(config_path):
            with open(config_path, 'r', encoding='utf-8') as file:
                config_data = yaml.safe_load(file) or {}
            logging_config = config_data.get('logging', copy.deepcopy(DEFAULT_LOGGING_CONFIG))
        else:
            logging_config = copy.deepcopy(DEFAULT_LOGGING_CONFIG)

        # Override levels if an explicit log_level was provided (e.g., --debug)
        if log_level:
            log_level = log_level.upper()
            if 'handlers' in logging_config and 'console' in logging_config['handlers']:
                logging_config['handlers']['console']['level'] = log_level
            package_logger = logging_config.get('loggers', {}).get(ROOT_LOGGER_NAME)
            if package_logger is not None:
                package_logger['level'] = log_level

        logging.config.dictConfig(logging_config)
    except (OSError, yaml.YAMLError, ValueError, TypeError, AttributeError) as config_error:
        # If dictConfig fails, fall back to basic configuration
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%H:%M:%S'
        )
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        logger.error(f"Failed to apply logging configuration: {config_error}")
        logger.info("Using basic logging configuration as fallback")
        return logger

    logger = logging.getLogger(ROOT_LOGGER_NAME)

    # Find console handlers and apply colored formatter
    for handler in logger.handlers + logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setFormatter(ColoredFormatter(
                fmt='%(asctime)s | %(levelname)-8s | %(message)s',
                datefmt='%H:%M:%S'
            ))

    logger.debug("Logging initialized")
    return logger


def get_logger(name: str = None) -> logging.Logger:
    """Get a logger instance"""
    if name:
        if name == ROOT_LOGGER_NAME or name.startswith(f'{ROOT_LOGGER_NAME}.'):
            return logging.getLogger(name)
        return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')
    return logging.getLogger(ROOT_LOGGER_NAME)
