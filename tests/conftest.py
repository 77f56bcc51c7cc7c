"""Pytest configuration and shared fixtures for logpeek tests.

This module provides auto-use fixtures that ensure test isolation,
particularly for the settings directory.
"""

import gzip
import os
import shutil
import tempfile

import pytest


@pytest.fixture(autouse=True)
def isolate_cache_directory(monkeypatch):
    """Auto-use fixture that isolates the data directory for each test.

    This fixture:
    1. Creates a temporary directory for the test's settings
    2. Sets LOGPEEK_CACHE_DIR environment variable to point to it
    3. Clears plugin base path overrides from the environment
    4. Cleans up the directory after the test completes
    """
    temp_cache_dir = tempfile.mkdtemp(prefix='logpeek_test_cache_')
    monkeypatch.setenv('LOGPEEK_CACHE_DIR', temp_cache_dir)
    for var in ('LOGPEEK_APACHE_BASE_PATH', 'LOGPEEK_NGINX_BASE_PATH', 'LOGPEEK_HOST_SYSTEM_BASE_PATH'):
        monkeypatch.delenv(var, raising=False)

    yield temp_cache_dir

    shutil.rmtree(temp_cache_dir, ignore_errors=True)


@pytest.fixture
def log_dir():
    """Temporary directory for log files."""
    tmp_dir = tempfile.mkdtemp(prefix='logpeek_logs_')
    yield os.path.realpath(tmp_dir)
    shutil.rmtree(tmp_dir, ignore_errors=True)


def write_log(directory: str, name: str, lines: list[str]) -> str:
    """Write lines (newline terminated) to directory/name and return the path."""
    path = os.path.join(directory, name)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as f:
        f.write(''.join(line + '\n' for line in lines))
    return path


def write_gzip_log(directory: str, name: str, lines: list[str]) -> str:
    path = os.path.join(directory, name)
    with gzip.open(path, 'wt') as f:
        f.write(''.join(line + '\n' for line in lines))
    return path
