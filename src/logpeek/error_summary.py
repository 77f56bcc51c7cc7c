"""Error density summary: counts error and warning lines in the tail of each log file.

Lines are classified with a couple of regexes rather than parsed, so a
dashboard can show which files have problems without the cost of full
parsing. Results are cached for a short TTL and a bounded progress log
lets clients follow a slow scan.
"""

import asyncio
import logging
import re
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import anyio

from logpeek import prometheus as prom
from logpeek.compression import is_archive_path
from logpeek.plugins import PluginRegistry
from logpeek.plugins.base import LogFileInfo
from logpeek.reader import inspect, iter_file_lines, read_last_lines
from logpeek.settings import ErrorAnalysisStore, PluginSettingsStore, effective_base_path
from logpeek.utils import file_name, format_file_size


logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 60.0
PROGRESS_CAPACITY = 15
PARALLEL_FILE_LIMIT = 6

# Web server plugins whose access logs are scanned for 3xx/4xx/5xx status codes
PLUGINS_WITH_ACCESS_LOGS = ('apache', 'nginx', 'npm')
# Plugins whose every file is scanned: severity tags can appear in any system log
SCAN_ALL_FILES_PLUGINS = ('host-system',)

_ERROR_TAG_RE = re.compile(r'\s\[(?:error|err|crit|critical|alert|emerg|emergency)\]\s', re.IGNORECASE)
_WARN_TAG_RE = re.compile(r'\s\[(?:warn|warning)\]\s', re.IGNORECASE)
_ERROR_WORD_RE = re.compile(r'\b(?:error|err|crit|critical|alert|emerg|emergency)\b', re.IGNORECASE)
_WARN_WORD_RE = re.compile(r'\b(?:warn|warning)\b', re.IGNORECASE)
# In access lines the status code follows the quoted request line; the size after it must not count
_REQUEST_STATUS_RE = re.compile(r'"\s+(\d{3})(?:\s|$)')
_STATUS_RE = re.compile(r'\s(5\d{2}|4\d{2}|3\d{2})(?:\s|"|$)')

Source = Literal['tag', '3xx', '4xx', '5xx']


@dataclass
class LineClass:
    level: Literal['error', 'warn']
    source: Source


def classify_line(line: str) -> LineClass | None:
    """Classify a raw line as error or warning without parsing it.

    Severity keywords (bracketed first, then bare words) win over HTTP
    status codes; 5xx and 4xx count as errors and 3xx as warnings.
    """
    text = line.strip()
    if not text:
        return None
    if _ERROR_TAG_RE.search(text):
        return LineClass('error', 'tag')
    if _WARN_TAG_RE.search(text):
        return LineClass('warn', 'tag')
    if _ERROR_WORD_RE.search(text):
        return LineClass('error', 'tag')
    if _WARN_WORD_RE.search(text):
        return LineClass('warn', 'tag')
    match = _REQUEST_STATUS_RE.search(text) or _STATUS_RE.search(text)
    if match:
        band = match.group(1)[0]
        if band == '5':
            return LineClass('error', '5xx')
        if band == '4':
            return LineClass('error', '4xx')
        if band == '3':
            return LineClass('warn', '3xx')
    return None


@dataclass
class ErrorFileSummary:
    plugin_id: str
    file_path: str
    file_name: str
    log_type: str
    file_size_bytes: int
    error_count: int = 0
    count_4xx: int = 0
    count_5xx: int = 0
    count_3xx: int = 0
    count_error_tag: int = 0
    count_warn_tag: int = 0

    def add(self, result: LineClass):
        if result.source == '4xx':
            self.count_4xx += 1
        elif result.source == '5xx':
            self.count_5xx += 1
        elif result.source == '3xx':
            self.count_3xx += 1
        elif result.level == 'error':
            self.count_error_tag += 1
        else:
            self.count_warn_tag += 1
        self.error_count += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            'pluginId': self.plugin_id,
            'filePath': self.file_path,
            'fileName': self.file_name,
            'logType': self.log_type,
            'fileSizeBytes': self.file_size_bytes,
            'errorCount': self.error_count,
            'count4xx': self.count_4xx,
            'count5xx': self.count_5xx,
            'count3xx': self.count_3xx,
            'countErrorTag': self.count_error_tag,
            'countWarnTag': self.count_warn_tag,
        }


@dataclass
class AnalysisError:
    """A file that could not be read, distinct from errors found inside a log."""

    plugin_id: str
    file_path: str
    file_name: str
    error_message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            'pluginId': self.plugin_id,
            'filePath': self.file_path,
            'fileName': self.file_name,
            'errorMessage': self.error_message,
        }


@dataclass
class SkippedLargeFile:
    plugin_id: str
    file_path: str
    file_name: str
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            'pluginId': self.plugin_id,
            'filePath': self.file_path,
            'fileName': self.file_name,
            'sizeBytes': self.size_bytes,
        }


@dataclass
class ErrorSummaryResult:
    files: list[ErrorFileSummary] = field(default_factory=list)
    analysis_errors: list[AnalysisError] = field(default_factory=list)
    skipped_large_files: list[SkippedLargeFile] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            'files': [f.to_dict() for f in self.files],
            'analysisErrors': [e.to_dict() for e in self.analysis_errors],
            'skippedLargeFiles': [s.to_dict() for s in self.skipped_large_files],
        }


class ErrorSummaryCache:
    """Holds the last result for a fixed TTL. The clock is injectable for tests."""

    def __init__(self, ttl: float = CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._result: ErrorSummaryResult | None = None
        self._computed_at = 0.0

    def get(self) -> tuple[ErrorSummaryResult, float] | None:
        """Cached result and its age in seconds, or None when empty or expired."""
        if self._result is None:
            return None
        age = self.clock() - self._computed_at
        if age >= self.ttl:
            return None
        return self._result, age

    def put(self, result: ErrorSummaryResult):
        self._result = result
        self._computed_at = self.clock()

    def invalidate(self):
        self._result = None


class ProgressLog:
    """Most recent steps of the running scan, oldest dropped first."""

    def __init__(self, capacity: int = PROGRESS_CAPACITY):
        self._entries: deque[dict] = deque(maxlen=capacity)

    def push(self, message: str, plugin_id: str | None = None, file_path: str | None = None):
        entry: dict[str, str] = {'message': message}
        if plugin_id:
            entry['pluginId'] = plugin_id
        if file_path:
            entry['filePath'] = file_path
        self._entries.append(entry)

    def clear(self):
        self._entries.clear()

    def snapshot(self) -> list[dict]:
        return list(self._entries)


def is_error_log_file(file: LogFileInfo) -> bool:
    path = file.path.lower()
    if file.type.lower() == 'error':
        return True
    return '.log' in path and 'error' in path


def is_access_log_file(file: LogFileInfo) -> bool:
    path = file.path.lower()
    if file.type.lower() == 'access':
        return True
    return '.log' in path and 'access' in path


def select_candidates(
    plugin_id: str, files: list[LogFileInfo], max_files: int, max_size: int
) -> tuple[list[LogFileInfo], list[LogFileInfo]]:
    """Pick the files to scan for one plugin. Returns (selected, too large)."""
    candidates = [
        f
        for f in files
        if (
            is_error_log_file(f)
            or (plugin_id in PLUGINS_WITH_ACCESS_LOGS and is_access_log_file(f))
            or plugin_id in SCAN_ALL_FILES_PLUGINS
        )
        and not is_archive_path(f.path)
    ]
    too_large = [f for f in candidates if f.size > max_size]
    selected = [f for f in candidates if f.size <= max_size]
    # Error logs first when trimming; sort is stable
    selected.sort(key=lambda f: 0 if is_error_log_file(f) else 1)
    return selected[:max_files], too_large


def count_lines(summary: ErrorFileSummary, lines) -> ErrorFileSummary:
    for line in lines:
        result = classify_line(line)
        if result:
            summary.add(result)
    return summary


class ErrorSummaryService:
    """Computes error summaries over the enabled plugins, with caching and progress."""

    def __init__(
        self,
        registry: PluginRegistry,
        plugin_settings: PluginSettingsStore,
        analysis_settings: ErrorAnalysisStore,
        cache: ErrorSummaryCache | None = None,
        progress: ProgressLog | None = None,
    ):
        self.registry = registry
        self.plugin_settings = plugin_settings
        self.analysis_settings = analysis_settings
        self.cache = cache or ErrorSummaryCache()
        self.progress = progress or ProgressLog()

    def invalidate(self):
        self.cache.invalidate()

    def get_progress(self) -> list[dict]:
        return self.progress.snapshot()

    async def get_summary_with_meta(self) -> dict[str, Any]:
        """Cached result when fresh, otherwise a new scan.

        Returns {result, fromCache, cacheAgeMs}.
        """
        cached = self.cache.get()
        if cached is not None:
            result, age = cached
            prom.record_error_summary(from_cache=True)
            return {'result': result, 'fromCache': True, 'cacheAgeMs': int(age * 1000)}

        start = time.time()
        self.progress.clear()
        result = await self.compute()
        self.cache.put(result)
        prom.record_error_summary(from_cache=False, duration=time.time() - start)
        return {'result': result, 'fromCache': False, 'cacheAgeMs': 0}

    def _plugin_options(self, plugin) -> tuple[bool, str, bool]:
        """Stored (enabled, base path, read compressed) for one plugin."""
        plugin_id = plugin.plugin_id
        return (
            self.plugin_settings.is_enabled(plugin_id),
            effective_base_path(plugin, self.plugin_settings),
            self.plugin_settings.read_compressed(plugin_id),
        )

    async def compute(self) -> ErrorSummaryResult:
        config = await anyio.to_thread.run_sync(self.analysis_settings.load)
        lines_per_file = config.tail_lines
        result = ErrorSummaryResult()

        for plugin_id in config.enabled_plugins:
            plugin = self.registry.find(plugin_id)
            if plugin is None:
                continue
            enabled, base_path, read_compressed = await anyio.to_thread.run_sync(self._plugin_options, plugin)
            if not enabled:
                continue
            self.progress.push(f'Plugin: {plugin_id}', plugin_id=plugin_id)

            try:
                scanned = await anyio.to_thread.run_sync(
                    plugin.scan_log_files, base_path, plugin.get_default_file_patterns()
                )
            except OSError as e:
                logger.warning(f'Plugin {plugin_id} scan failed: {e}')
                continue

            selected, too_large = select_candidates(
                plugin_id, scanned, config.max_files_per_plugin, config.max_file_size_bytes
            )
            for f in too_large:
                result.skipped_large_files.append(SkippedLargeFile(plugin_id, f.path, file_name(f.path), f.size))
            if too_large:
                message = f'Skipped (too large): {len(too_large)} file(s) for {plugin_id}'
                logger.info(message)
                self.progress.push(message, plugin_id=plugin_id)

            selected = [f for f in selected if f.size > 0]
            for f in selected:
                self.progress.push(
                    f'Queued: {file_name(f.path)} ({format_file_size(f.size)})', plugin_id=plugin_id, file_path=f.path
                )

            for i in range(0, len(selected), PARALLEL_FILE_LIMIT):
                batch = selected[i : i + PARALLEL_FILE_LIMIT]
                outcomes = await asyncio.gather(
                    *(self._process_file(plugin_id, f, lines_per_file, read_compressed) for f in batch)
                )
                for summary, error in outcomes:
                    if summary:
                        result.files.append(summary)
                    if error:
                        result.analysis_errors.append(error)

        result.files.sort(key=lambda s: s.error_count, reverse=True)
        return result

    async def _process_file(
        self, plugin_id: str, file: LogFileInfo, lines_per_file: int, read_compressed: bool
    ) -> tuple[ErrorFileSummary | None, AnalysisError | None]:
        name = file_name(file.path)
        self.progress.push(f'Reading: {name} ({format_file_size(file.size)})', plugin_id=plugin_id, file_path=file.path)
        try:
            lines = await anyio.to_thread.run_sync(read_last_lines, file.path, lines_per_file, read_compressed)
        except (OSError, UnicodeError) as e:
            logger.warning(f'Error processing {file.path}: {e}')
            self.progress.push(f'Read failed: {name}', plugin_id=plugin_id, file_path=file.path)
            return None, AnalysisError(plugin_id, file.path, name, str(e))

        prom.record_file_scanned('error_summary')
        if not lines:
            self.progress.push(f'Skipped (empty): {name}', plugin_id=plugin_id, file_path=file.path)
            return None, None

        self.progress.push(f'Counting: {name} ({len(lines)} lines)', plugin_id=plugin_id, file_path=file.path)
        summary = ErrorFileSummary(plugin_id, file.path, name, file.type, file.size)
        count_lines(summary, (raw.content for raw in lines))
        if summary.error_count == 0:
            self.progress.push(f'Skipped (no errors): {name}', plugin_id=plugin_id, file_path=file.path)
            return None, None

        self.progress.push(
            f'Done: {name} ({format_file_size(file.size)}, {summary.error_count} errors)',
            plugin_id=plugin_id,
            file_path=file.path,
        )
        return summary, None

    def analyze_single_file(
        self, plugin_id: str, file_path: str, read_compressed: bool = False
    ) -> tuple[ErrorFileSummary | None, str | None]:
        """Count a whole file, for files too large for the batch scan.

        Streams the file so memory stays flat. Returns (summary, error message).
        """
        info = inspect(file_path)
        if not info.exists or not info.readable:
            return None, 'File not found or not readable'

        plugin = self.registry.find(plugin_id)
        log_type = plugin.determine_log_type(file_path) if plugin else 'error'
        summary = ErrorFileSummary(plugin_id, file_path, file_name(file_path), log_type, info.size)
        try:
            count_lines(summary, iter_file_lines(file_path, read_compressed))
        except OSError as e:
            logger.warning(f'analyze_single_file {file_path}: {e}')
            return None, str(e)
        return summary, None


__all__ = [
    'AnalysisError',
    'ErrorFileSummary',
    'ErrorSummaryCache',
    'ErrorSummaryResult',
    'ErrorSummaryService',
    'ProgressLog',
    'SkippedLargeFile',
    'classify_line',
]
