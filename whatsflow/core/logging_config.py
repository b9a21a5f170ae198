# whatsflow/core/logging_config.py
"""
Logging configuration for whatsflow.
Console output plus rotating files, with a dedicated log for routing decisions.
"""
import logging
import logging.handlers
import sys
from pathlib import Path

from whatsflow.core.config import LOG_DIR

ROUTING_LOGGER_NAME = "whatsflow.routing"


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for better readability"""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record):
        levelname = record.levelname
        log_color = self.COLORS.get(levelname, self.COLORS['RESET'])
        record.levelname = f"{log_color}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def _rotating_handler(path: Path, level: int, fmt: str, max_mb: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=5,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


def setup_logging(app_name: str = "whatsflow", level: str = "INFO", log_dir: str = LOG_DIR):
    """
    Setup logging with console and file handlers.

    Creates three log files:
    - error.log: Only ERROR and CRITICAL messages
    - debug.log: All DEBUG and above messages
    - routing.log: One line per dispatch decision (whatsflow.routing)
    """
    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # ═══════════════════════════════════════════════════════════
    # Console Handler - with colors
    # ═══════════════════════════════════════════════════════════
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(ColoredFormatter('%(levelname)s | %(name)s | %(message)s'))
    root_logger.addHandler(console_handler)

    root_logger.addHandler(_rotating_handler(
        logs_dir / "error.log",
        logging.ERROR,
        '%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s',
        max_mb=10
    ))
    root_logger.addHandler(_rotating_handler(
        logs_dir / "debug.log",
        logging.DEBUG,
        '%(asctime)s | %(levelname)-8s | %(name)-30s | %(filename)s:%(lineno)d | %(message)s',
        max_mb=20
    ))

    # Routing decisions also go to root handlers
    routing_logger = logging.getLogger(ROUTING_LOGGER_NAME)
    for handler in routing_logger.handlers[:]:
        routing_logger.removeHandler(handler)
    routing_logger.addHandler(_rotating_handler(
        logs_dir / "routing.log",
        logging.DEBUG,
        '%(asctime)s | %(levelname)-8s | %(message)s',
        max_mb=20
    ))
    routing_logger.setLevel(logging.DEBUG)
    routing_logger.propagate = True

    # Quiet chatty client libraries
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"{'='*60}")
    logger.info(f"Logging initialized for {app_name}")
    logger.info(f"Log directory: {logs_dir}")
    logger.info(f"{'='*60}")

    return root_logger


def get_routing_logger() -> logging.Logger:
    """Get logger for dispatch decisions"""
    return logging.getLogger(ROUTING_LOGGER_NAME)
