import logging
import sys
import os
from datetime import datetime

import services.util as u
from services.models import LogRecord, MetaValue

# ANSI 颜色码
COLORS = {
    'DBG': '\033[36m',   # 青蓝
    'INF': '\033[32m',   # 绿色
    'WRN': '\033[33m',   # 黄色
    'ERR': '\033[31m',   # 红色
    'CRT': '\033[91m\033[1m',  # 亮红加粗
    'RST': '\033[0m'
}

IS_TTY = sys.stdout.isatty()

LOG_DIR = u.get_log_path()
os.makedirs(LOG_DIR, exist_ok=True)

# 20250915-150316160.log
_log_filename = datetime.now().strftime("%Y%m%d-%H%M%S%f")[:-3] + ".log"
LOG_FILE_PATH = os.path.join(LOG_DIR, _log_filename)


# Populated by register_sensitive() once bot tokens are known.
_sensitive: set[str] = set()


def register_sensitive(values) -> None:
    """Register secret strings that must never appear in log output."""
    _sensitive.clear()
    # Skip values shorter than 8 chars to avoid masking common substrings
    _sensitive.update(v for v in values if v and len(v) >= 8)


def mask(text: str) -> str:
    for secret in _sensitive:
        if secret in text:
            text = text.replace(secret, "***")
    return text


class MaskingFilter(logging.Filter):
    """Redacts sensitive values from every log record before emission."""

    def filter(self, record: logging.LogRecord) -> bool:
        if _sensitive:
            record.msg = mask(record.getMessage())
            record.args = ()
        return True


class CustomFormatter(logging.Formatter):
    replaces = {
        'DEBUG': '[DBG]',
        'INFO': '[INF]',
        'WARNING': '[WRN]',
        'ERROR': '[ERR]',
        'CRITICAL': '[CRT]'
    }

    def format(self, record):
        timestamp = datetime.now().strftime('[%Y-%m-%d %H:%M:%S]')
        level = self.replaces.get(record.levelname, f'[{record.levelname}]')
        color_key = level[1:4]

        if IS_TTY and color_key in COLORS:
            level = COLORS[color_key] + level + COLORS['RST']

        try:
            file = os.path.relpath(record.pathname)
        except ValueError:
            file = record.pathname

        return f"{timestamp} {level} | {file}:{record.lineno} | {record.getMessage()}"


logger = logging.getLogger('bridge')
logger.setLevel(logging.DEBUG)
logger.addFilter(MaskingFilter())

# 清除已有 handlers 防止重复
if logger.handlers:
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
logger.propagate = False

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setFormatter(CustomFormatter())
console_handler.setLevel(logging.INFO)
logger.addHandler(console_handler)

file_handler = logging.FileHandler(LOG_FILE_PATH, encoding='utf-8')
file_handler.setFormatter(logging.Formatter(
    '[%(asctime)s] [%(levelname)s] | %(filename)s:%(lineno)d | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
))
file_handler.setLevel(logging.DEBUG)
logger.addHandler(file_handler)


def get_logger(name=None):
    """Return the shared, configured logger."""
    return logger


# ----------------------------------------------------------------------
# Structured event sink
# ----------------------------------------------------------------------

_PY_LEVELS = {
    "info":  logging.INFO,
    "warn":  logging.WARNING,
    "error": logging.ERROR,
}


def _coerce(value) -> MetaValue:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _render(message: str, metadata: dict[str, MetaValue]) -> str:
    if not metadata:
        return message
    pairs = " ".join(f"{k}={v}" for k, v in metadata.items())
    return f"{message} ({pairs})"


class EventLog:
    """
    Writes relay events to the console/file logger and, when a store is
    attached, as ``LogRecord`` rows the admin surface can read back.

    ``debug`` never reaches the store; the store only knows info/warn/error.
    """

    def __init__(self, store=None):
        self._store = store

    def debug(self, message: str, **metadata):
        logger.debug(_render(message, metadata), stacklevel=2)

    def info(self, message: str, **metadata):
        self._emit("info", message, metadata)

    def warn(self, message: str, **metadata):
        self._emit("warn", message, metadata)

    def error(self, message: str, **metadata):
        self._emit("error", message, metadata)

    def _emit(self, level: str, message: str, metadata: dict):
        meta = {k: _coerce(v) for k, v in metadata.items()}
        logger.log(_PY_LEVELS[level], _render(message, meta), stacklevel=3)

        if self._store is None:
            return
        if _sensitive:
            message = mask(message)
            meta = {k: mask(v) if isinstance(v, str) else v for k, v in meta.items()}
        try:
            self._store.create_log(LogRecord(level=level, message=message, metadata=meta))
        except Exception as e:
            logger.error(f"Failed to write log record to store: {e}")
