"""Environment, data directory and formatting helpers shared by the app and the CLI"""

import logging
import os
from pathlib import Path


TRUE_VALUES = ('true', 'yes', 'on', '1')
FALSE_VALUES = ('false', 'no', 'off', '0')

# Exceptions uvicorn and asyncio log as errors when the server is stopped with Ctrl+C
SHUTDOWN_EXCEPTIONS = ('KeyboardInterrupt', 'CancelledError', 'SystemExit')


def get_int_env(key: str, default: int = 0) -> int:
    """Integer from the environment; unset or malformed values give the default."""
    try:
        return int(os.environ[key])
    except (KeyError, ValueError):
        return default


def get_str_env(key: str, default: str) -> str:
    return os.getenv(key, default)


def get_bool_env(key: str, default: bool) -> bool:
    """
    Boolean from the environment.

    Accepts true/false, yes/no, on/off and 1/0 in any case. Anything else,
    including an unset variable, gives the default.
    """
    value = os.getenv(key, '').strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    return default


class ShutdownFilter(logging.Filter):
    """Drops the error records a server logs while it is being interrupted."""

    def filter(self, record):
        if record.levelno != logging.ERROR:
            return True
        message = record.getMessage()
        if 'Shutting down' in message or any(name in message for name in SHUTDOWN_EXCEPTIONS):
            return False
        exc_type = record.exc_info[0] if record.exc_info else None
        return not (exc_type and exc_type.__name__ in SHUTDOWN_EXCEPTIONS)


def setup_shutdown_filter():
    """Install ShutdownFilter on the uvicorn and asyncio loggers; call before `uvicorn.run`."""
    shutdown_filter = ShutdownFilter()
    for name in ('uvicorn', 'uvicorn.error', 'asyncio'):
        logging.getLogger(name).addFilter(shutdown_filter)


def get_cache_base() -> Path:
    """
    Root of the logpeek data directory.

    LOGPEEK_CACHE_DIR is used as-is when set. Otherwise the directory is
    `logpeek` under $XDG_CACHE_HOME, or under ~/.cache.
    """
    explicit = os.environ.get('LOGPEEK_CACHE_DIR')
    if explicit:
        return Path(explicit)
    xdg_cache = os.environ.get('XDG_CACHE_HOME')
    root = Path(xdg_cache) if xdg_cache else Path.home() / '.cache'
    return root / 'logpeek'


def get_cache_dir(subdir: str) -> Path:
    """A subdirectory of the data directory (e.g. 'settings'), created on first use."""
    path = get_cache_base() / subdir
    path.mkdir(parents=True, exist_ok=True)
    return path


def file_name(path: str) -> str:
    """Return the last path component, or the path itself when it has none."""
    return os.path.basename(path) or path


def format_file_size(size_bytes: int) -> str:
    """Human readable size used in progress messages."""
    if size_bytes < 1024:
        return f'{size_bytes} B'
    if size_bytes < 1024 * 1024:
        return f'{size_bytes / 1024:.1f} KB'
    return f'{size_bytes / (1024 * 1024):.1f} MB'
