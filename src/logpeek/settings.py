"""Persistent settings: per-plugin configuration, the log catalog and error analysis options.

Each store is a small JSON document under <cache>/settings/. Documents are
re-read on every access so several processes (server and CLI) see each
other's writes; writes go through a temp file and an atomic rename.
"""

import json
import logging
import os
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from logpeek.compression import normalize_log_path
from logpeek.plugins.base import LogSourcePlugin
from logpeek.utils import get_cache_dir


logger = logging.getLogger(__name__)

PLUGINS_FILE = 'plugins.json'
CATALOG_FILE = 'catalog.json'
ERROR_ANALYSIS_FILE = 'error_analysis.json'

ALLOWED_ANALYSIS_PLUGINS = ('apache', 'nginx', 'npm', 'host-system')
DEFAULT_ANALYSIS_PLUGINS = ['apache', 'nginx', 'npm']

DEPTH_TO_LINES = {'light': 500, 'normal': 1000, 'deep': 2000}

MB = 1024 * 1024


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def settings_dir() -> Path:
    return get_cache_dir('settings')


class JsonDocument:
    """A JSON file loaded and saved as a whole."""

    def __init__(self, path: Path, default):
        self.path = Path(path)
        self._default = default
        self.lock = threading.RLock()

    def load(self):
        if not self.path.exists():
            return self._default()
        try:
            with open(self.path, encoding='utf-8') as f:
                return json.load(f)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f'Ignoring unreadable settings file {self.path}: {e}')
            return self._default()

    def save(self, data):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)


class PluginSettingsStore:
    """Per-plugin records: {enabled, settings, updatedAt}.

    settings may hold basePath, readCompressed and customRegex, the latter
    mapping a normalized file path (or a generic key such as access.log)
    to {regex, logType, updatedAt}.
    """

    def __init__(self, path: Path | None = None):
        self._doc = JsonDocument(path or settings_dir() / PLUGINS_FILE, dict)

    def all(self) -> dict[str, dict]:
        return self._doc.load()

    def find_by_plugin_id(self, plugin_id: str) -> dict | None:
        return self._doc.load().get(plugin_id)

    def create(self, plugin_id: str, enabled: bool = True, settings: dict | None = None) -> dict:
        with self._doc.lock:
            data = self._doc.load()
            record = {'enabled': enabled, 'settings': dict(settings or {}), 'updatedAt': _now()}
            data[plugin_id] = record
            self._doc.save(data)
            return record

    def update(self, plugin_id: str, enabled: bool | None = None, settings: dict | None = None) -> dict | None:
        """Merge settings into an existing record. Returns None when the plugin has no record."""
        with self._doc.lock:
            data = self._doc.load()
            record = data.get(plugin_id)
            if record is None:
                return None
            if enabled is not None:
                record['enabled'] = enabled
            if settings is not None:
                record.setdefault('settings', {}).update(settings)
            record['updatedAt'] = _now()
            self._doc.save(data)
            return record

    def upsert(self, plugin_id: str, enabled: bool | None = None, settings: dict | None = None) -> dict:
        with self._doc.lock:
            record = self.update(plugin_id, enabled=enabled, settings=settings)
            if record is None:
                record = self.create(plugin_id, enabled=True if enabled is None else enabled, settings=settings)
            return record

    def delete(self, plugin_id: str) -> bool:
        with self._doc.lock:
            data = self._doc.load()
            if plugin_id not in data:
                return False
            del data[plugin_id]
            self._doc.save(data)
            return True

    # Effective values

    def is_enabled(self, plugin_id: str) -> bool:
        record = self.find_by_plugin_id(plugin_id)
        return True if record is None else bool(record.get('enabled', True))

    def get_settings(self, plugin_id: str) -> dict:
        record = self.find_by_plugin_id(plugin_id) or {}
        return record.get('settings') or {}

    def read_compressed(self, plugin_id: str) -> bool:
        return bool(self.get_settings(plugin_id).get('readCompressed', False))

    def base_path(self, plugin_id: str) -> str | None:
        value = self.get_settings(plugin_id).get('basePath')
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    # Custom regexes

    def get_custom_regex_map(self, plugin_id: str) -> dict[str, dict]:
        custom = self.get_settings(plugin_id).get('customRegex')
        return custom if isinstance(custom, dict) else {}

    def get_custom_regex(self, plugin_id: str, file_path: str) -> dict | None:
        """Stored entry for a path, by exact key then by normalized key."""
        custom = self.get_custom_regex_map(plugin_id)
        return custom.get(file_path) or custom.get(normalize_log_path(file_path))

    def set_custom_regex(self, plugin_id: str, file_path: str, regex: str, log_type: str | None = None) -> dict:
        """Store a regex under the normalized path so rotated variants share it."""
        key = normalize_log_path(file_path)
        entry = {'regex': regex, 'logType': log_type or 'custom', 'updatedAt': _now()}
        with self._doc.lock:
            custom = dict(self.get_custom_regex_map(plugin_id))
            custom[key] = entry
            self.upsert(plugin_id, settings={'customRegex': custom})
        return {'filePath': key, **entry}

    def delete_custom_regex(self, plugin_id: str, file_path: str) -> bool:
        with self._doc.lock:
            custom = dict(self.get_custom_regex_map(plugin_id))
            removed = False
            for key in {file_path, normalize_log_path(file_path)}:
                if key in custom:
                    del custom[key]
                    removed = True
            if removed:
                self.upsert(plugin_id, settings={'customRegex': custom})
            return removed


class CatalogStore:
    """Log sources and the log files registered under them."""

    def __init__(self, path: Path | None = None):
        self._doc = JsonDocument(
            path or settings_dir() / CATALOG_FILE,
            lambda: {'sources': [], 'files': [], 'nextSourceId': 1, 'nextFileId': 1},
        )

    # Sources

    def list_sources(self) -> list[dict]:
        return self._doc.load()['sources']

    def get_source(self, source_id: int) -> dict | None:
        return next((s for s in self.list_sources() if s['id'] == source_id), None)

    def create_source(
        self,
        name: str,
        plugin_id: str,
        base_path: str,
        file_patterns: list[str],
        type: str | None = None,
        enabled: bool = True,
        follow: bool = True,
        max_lines: int = 0,
    ) -> dict:
        with self._doc.lock:
            data = self._doc.load()
            now = _now()
            source = {
                'id': data['nextSourceId'],
                'name': name,
                'pluginId': plugin_id,
                'type': type or plugin_id,
                'basePath': base_path,
                'filePatterns': list(file_patterns),
                'enabled': enabled,
                'follow': follow,
                'maxLines': max_lines,
                'createdAt': now,
                'updatedAt': now,
            }
            data['sources'].append(source)
            data['nextSourceId'] += 1
            self._doc.save(data)
            return source

    def update_source(self, source_id: int, **changes: Any) -> dict | None:
        with self._doc.lock:
            data = self._doc.load()
            source = next((s for s in data['sources'] if s['id'] == source_id), None)
            if source is None:
                return None
            source.update({k: v for k, v in changes.items() if v is not None})
            source['updatedAt'] = _now()
            self._doc.save(data)
            return source

    def delete_source(self, source_id: int) -> bool:
        """Delete a source and every file registered under it."""
        with self._doc.lock:
            data = self._doc.load()
            sources = [s for s in data['sources'] if s['id'] != source_id]
            if len(sources) == len(data['sources']):
                return False
            data['sources'] = sources
            data['files'] = [f for f in data['files'] if f['sourceId'] != source_id]
            self._doc.save(data)
            return True

    # Files

    def list_files(self, source_id: int | None = None) -> list[dict]:
        files = self._doc.load()['files']
        if source_id is None:
            return files
        return [f for f in files if f['sourceId'] == source_id]

    def get_file(self, file_id: int) -> dict | None:
        return next((f for f in self.list_files() if f['id'] == file_id), None)

    def find_file(self, source_id: int, file_path: str) -> dict | None:
        return next((f for f in self.list_files(source_id) if f['filePath'] == file_path), None)

    def create_file(
        self,
        source_id: int,
        file_path: str,
        log_type: str,
        enabled: bool = True,
        follow: bool = True,
        max_lines: int = 0,
    ) -> dict:
        with self._doc.lock:
            data = self._doc.load()
            now = _now()
            record = {
                'id': data['nextFileId'],
                'sourceId': source_id,
                'filePath': file_path,
                'logType': log_type,
                'enabled': enabled,
                'follow': follow,
                'maxLines': max_lines,
                'createdAt': now,
                'updatedAt': now,
            }
            data['files'].append(record)
            data['nextFileId'] += 1
            self._doc.save(data)
            return record

    def update_file(self, file_id: int, **changes: Any) -> dict | None:
        with self._doc.lock:
            data = self._doc.load()
            record = next((f for f in data['files'] if f['id'] == file_id), None)
            if record is None:
                return None
            record.update({k: v for k, v in changes.items() if v is not None})
            record['updatedAt'] = _now()
            self._doc.save(data)
            return record

    def upsert_file(self, source_id: int, file_path: str, log_type: str) -> dict:
        with self._doc.lock:
            existing = self.find_file(source_id, file_path)
            if existing:
                return self.update_file(existing['id'], logType=log_type)
            return self.create_file(source_id, file_path, log_type)

    def delete_file(self, file_id: int) -> bool:
        with self._doc.lock:
            data = self._doc.load()
            files = [f for f in data['files'] if f['id'] != file_id]
            if len(files) == len(data['files']):
                return False
            data['files'] = files
            self._doc.save(data)
            return True


SecurityCheckDepth = Literal['light', 'normal', 'deep']


class ErrorAnalysisConfig(BaseModel):
    """Options of the error-density scan. Out-of-range values are clamped, not rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    error_summary_enabled: bool = False
    enabled_plugins: list[str] = DEFAULT_ANALYSIS_PLUGINS
    max_files_per_plugin: int = 20
    lines_per_file: int = 1000
    max_file_size_bytes: int = 10 * MB
    security_check_depth: SecurityCheckDepth = 'normal'

    @field_validator('enabled_plugins', mode='before')
    @classmethod
    def _filter_plugins(cls, value):
        if not isinstance(value, list):
            return list(DEFAULT_ANALYSIS_PLUGINS)
        allowed = [p for p in value if p in ALLOWED_ANALYSIS_PLUGINS]
        return allowed or list(DEFAULT_ANALYSIS_PLUGINS)

    @field_validator('max_files_per_plugin')
    @classmethod
    def _clamp_files(cls, value: int) -> int:
        return _clamp(value, 1, 100)

    @field_validator('lines_per_file')
    @classmethod
    def _clamp_lines(cls, value: int) -> int:
        return _clamp(value, 100, 10000)

    @field_validator('max_file_size_bytes')
    @classmethod
    def _clamp_size(cls, value: int) -> int:
        return _clamp(value, MB, 100 * MB)

    @field_validator('security_check_depth', mode='before')
    @classmethod
    def _known_depth(cls, value):
        return value if value in DEPTH_TO_LINES else 'normal'

    @property
    def tail_lines(self) -> int:
        """Lines read from the end of each file, set by the depth tier."""
        return DEPTH_TO_LINES[self.security_check_depth]


class ErrorAnalysisStore:
    """Stored error analysis options merged over the defaults."""

    def __init__(self, path: Path | None = None):
        self._doc = JsonDocument(path or settings_dir() / ERROR_ANALYSIS_FILE, dict)

    def load(self) -> ErrorAnalysisConfig:
        return ErrorAnalysisConfig.model_validate(self._doc.load())

    def save(self, changes: dict) -> ErrorAnalysisConfig:
        """Merge changes (camelCase keys) into the stored config."""
        with self._doc.lock:
            current = self.load().model_dump(by_alias=True)
            current.update(changes)
            config = ErrorAnalysisConfig.model_validate(current)
            self._doc.save(config.model_dump(by_alias=True))
            return config


def effective_base_path(plugin: LogSourcePlugin, store: PluginSettingsStore, override: str | None = None) -> str:
    """Base path to scan: explicit override, saved setting, env override, plugin default."""
    if override and override.strip():
        return override.strip()
    return store.base_path(plugin.plugin_id) or plugin.get_default_base_path()
