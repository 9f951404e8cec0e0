import logging
import os
import sys
import json
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# --- Constants ---
LOGGER_NAME = 'recipe'
LOG_DIR = Path(os.getenv('LOG_DIR', Path(__file__).resolve().parent.parent / 'logs'))
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# Context attached with ``extra=`` by the orchestration layer
CONTEXT_FIELDS = ('operation', 'provider', 'kind', 'pool')


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record, plus whichever CONTEXT_FIELDS the call site set.
    """
    def format(self, record):
        log_object = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_object[field] = value
        if record.exc_info:
            log_object['exc_info'] = self.formatException(record.exc_info)

        return json.dumps(log_object)


def setup_logging(log_level: Optional[str] = None, log_dir: Optional[Path] = None) -> logging.Logger:
    """
    Configures the ``recipe`` logger and leaves the host application's root logger alone.
    - Console: plain text on stderr.
    - File: JSON in ``<log_dir>/recipe.log`` with rotation, unless LOG_TO_FILE is "false".

    Calling it again replaces the handlers instead of stacking them.
    """
    log_level = (log_level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_dir = Path(log_dir) if log_dir is not None else LOG_DIR

    recipe_logger = logging.getLogger(LOGGER_NAME)
    recipe_logger.setLevel(log_level)
    recipe_logger.propagate = False
    for handler in list(recipe_logger.handlers):
        recipe_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    recipe_logger.addHandler(console_handler)

    if os.getenv('LOG_TO_FILE', 'true').lower() != 'false':
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / 'recipe.log',
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setFormatter(JsonFormatter())
        recipe_logger.addHandler(file_handler)

    return recipe_logger


# Initialize logging when the module is imported
logger = setup_logging()
