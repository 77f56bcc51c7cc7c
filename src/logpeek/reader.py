"""Raw log file access.

Stat/permission/compression/rotation inspection, bounded and tail reads,
and real-time follow of growing files. Read functions are synchronous and
are offloaded to worker threads by async callers; `follow` runs on the
asyncio event loop and bridges watchdog notifications into it.
"""

import asyncio
import gzip
import logging
import os
import re
import zlib
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

import anyio
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from logpeek import prometheus as prom
from logpeek.compression import READABLE_FORMATS, CompressionFormat, detect_compression, is_compressed, is_rotated


logger = logging.getLogger(__name__)

# Consecutive read/notification errors before a follower permanently switches to polling
MAX_WATCH_ERRORS = 5
# Seconds between polls once a follower is in polling mode
POLL_INTERVAL = 1.0
# Existing lines replayed to a new follower before live delivery starts
MAX_REPLAY_LINES = 10000
# Seconds to wait for the watchdog observer thread on cancel
OBSERVER_JOIN_TIMEOUT = 1.0

ENCODING = 'utf-8'

# Errors raised by gzip for truncated or corrupted archives. BadGzipFile is an OSError subclass.
CORRUPTED_ARCHIVE_ERRORS = (gzip.BadGzipFile, EOFError, zlib.error)


@dataclass
class FileInfo:
    """File descriptor computed fresh on every call."""

    path: str
    size: int
    modified: datetime | None
    exists: bool
    readable: bool
    compressed: bool
    rotated: bool

    def to_dict(self) -> dict:
        return {
            'path': self.path,
            'size': self.size,
            'modifiedAt': self.modified.isoformat() if self.modified else None,
            'exists': self.exists,
            'readable': self.readable,
            'compressed': self.compressed,
            'rotated': self.rotated,
        }


@dataclass
class RawLine:
    """One line of a file, 1-based line number within the current read."""

    content: str
    line_number: int
    source_path: str


def inspect(path: str) -> FileInfo:
    """Describe a file without reading it.

    Never raises for a missing file (exists=False) and reports permission
    problems as readable=False. Paths the OS rejects outright (embedded
    NUL, a file used as a directory) count as missing.
    """

    def unavailable(exists: bool) -> FileInfo:
        return FileInfo(
            path=path,
            size=0,
            modified=None,
            exists=exists,
            readable=False,
            compressed=is_compressed(path),
            rotated=is_rotated(path),
        )

    try:
        st = os.stat(path)
    except PermissionError:
        # Parent directory not traversable: the file may exist but we cannot tell its size
        return unavailable(exists=True)
    except (OSError, ValueError):
        return unavailable(exists=False)

    readable = os.path.isfile(path) and os.access(path, os.R_OK)
    return FileInfo(
        path=path,
        size=st.st_size,
        modified=datetime.fromtimestamp(st.st_mtime, tz=UTC),
        exists=True,
        readable=readable,
        compressed=is_compressed(path),
        rotated=is_rotated(path),
    )


def iter_file_lines(path: str, read_compressed: bool = False) -> Iterator[str]:
    """Yield the lines of a file without trailing newlines.

    Compressed files are decoded only when read_compressed is set and the
    format is gzip; other compressions yield nothing. A truncated or
    corrupted archive stops the iteration quietly after whatever was
    already decoded.
    """
    fmt = detect_compression(path)
    if fmt != CompressionFormat.NONE:
        if not read_compressed or fmt not in READABLE_FORMATS:
            logger.debug(f'Skipping compressed file {path} (format={fmt.value}, read_compressed={read_compressed})')
            return
        try:
            with gzip.open(path, 'rt', encoding=ENCODING, errors='replace') as f:
                for line in f:
                    yield line.rstrip('\r\n')
        except CORRUPTED_ARCHIVE_ERRORS as e:
            logger.debug(f'Corrupted archive {path}: {e}')
        return

    with open(path, encoding=ENCODING, errors='replace') as f:
        for line in f:
            yield line.rstrip('\r\n')


def _numbered_lines(path: str, read_compressed: bool) -> Iterator[RawLine]:
    try:
        for line_number, content in enumerate(iter_file_lines(path, read_compressed), start=1):
            yield RawLine(content=content, line_number=line_number, source_path=path)
    except (FileNotFoundError, PermissionError) as e:
        # File vanished or permissions changed between inspect and open
        logger.debug(f'Cannot read {path}: {e}')


def read_lines(path: str, max_lines: int = 0, from_line: int = 0, read_compressed: bool = False) -> list[RawLine]:
    """Read lines from_line+1 .. from_line+max_lines (max_lines=0 means unbounded).

    Returns an empty list for missing or unreadable files.
    """
    info = inspect(path)
    if not info.exists or not info.readable:
        return []

    lines: list[RawLine] = []
    for raw in _numbered_lines(path, read_compressed):
        if raw.line_number <= from_line:
            continue
        if max_lines > 0 and len(lines) >= max_lines:
            break
        lines.append(raw)
    return lines


def read_last_lines(path: str, max_lines: int, read_compressed: bool = False) -> list[RawLine]:
    """Return the final max_lines lines of a file in one sequential pass.

    Memory stays proportional to max_lines regardless of the file size.
    """
    info = inspect(path)
    if not info.exists or not info.readable or max_lines <= 0:
        return []

    window: deque[RawLine] = deque(maxlen=max_lines)
    for raw in _numbered_lines(path, read_compressed):
        window.append(raw)
    return list(window)


def _mtime(path: str) -> float:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return 0


def detect_rotation(path: str) -> str | None:
    """Return the most recently modified rotated sibling of a log file, if any."""
    directory = os.path.dirname(path) or '.'
    base = os.path.basename(path)
    pattern = re.compile(rf'^{re.escape(base)}\.(\d+|\d{{8}})(\.(gz|bz2|xz))?$')
    try:
        candidates = [os.path.join(directory, name) for name in os.listdir(directory) if pattern.match(name)]
    except OSError:
        return None
    if not candidates:
        return None
    return max(candidates, key=_mtime)


def scan_existing(path: str, from_line: int, limit: int = MAX_REPLAY_LINES) -> tuple[list[RawLine], int, int]:
    """Read the current content of an uncompressed file for a new follower.

    Returns (lines past from_line, capped to the last `limit`), the number of
    complete lines in the file, and the byte offset just after the last
    complete line. An unterminated trailing line is left for the follower.
    """
    window: deque[RawLine] = deque(maxlen=limit)
    line_number = 0
    offset = 0
    with open(path, 'rb') as f:
        for raw in f:
            if not raw.endswith(b'\n'):
                break
            offset += len(raw)
            line_number += 1
            if line_number > from_line:
                text = raw.decode(ENCODING, errors='replace').rstrip('\r\n')
                window.append(RawLine(content=text, line_number=line_number, source_path=path))
    return list(window), line_number, offset


class FollowState(str, Enum):
    """Delivery mechanism of a follower. WATCHING -> POLLING happens at most once."""

    WATCHING = 'watching'
    POLLING = 'polling'


class _PathEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for one file to its follower."""

    def __init__(self, follower: 'FileFollower'):
        super().__init__()
        self._follower = follower

    def _matches(self, event) -> bool:
        if event.is_directory:
            return False
        target = self._follower.watch_path
        paths = [os.path.abspath(event.src_path)]
        dest = getattr(event, 'dest_path', None)
        if dest:
            paths.append(os.path.abspath(dest))
        return target in paths

    def on_modified(self, event):
        if self._matches(event):
            self._follower.notify()

    def on_created(self, event):
        if self._matches(event):
            self._follower.notify()

    def on_moved(self, event):
        if self._matches(event):
            self._follower.notify()


class FileFollower:
    """Delivers lines appended to a file after a known byte offset.

    Starts in WATCHING state (watchdog observer on the parent directory)
    and moves to POLLING after MAX_WATCH_ERRORS consecutive errors or when
    the observer cannot be scheduled. `cancel` stops whichever mechanism is
    active immediately and is safe to call repeatedly.
    """

    def __init__(
        self,
        path: str,
        on_line: Callable[[RawLine], None],
        offset: int = 0,
        line_number: int = 0,
        poll_interval: float = POLL_INTERVAL,
        max_errors: int = MAX_WATCH_ERRORS,
        use_watcher: bool = True,
    ):
        self.path = path
        self.watch_path = os.path.abspath(path)
        self.on_line = on_line
        self.offset = offset
        self.line_number = line_number
        self.poll_interval = poll_interval
        self.max_errors = max_errors
        self.use_watcher = use_watcher
        self.state = FollowState.WATCHING
        self.error_count = 0
        self.closed = False
        self._partial = b''
        self._observer = None
        self._task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._changed: asyncio.Event | None = None

    async def start(self):
        """Attach the change notification and start the delivery task."""
        self._loop = asyncio.get_running_loop()
        self._changed = asyncio.Event()
        if self.use_watcher:
            self._start_observer()
        else:
            self.state = FollowState.POLLING
        self._task = asyncio.create_task(self._run())

    def _start_observer(self):
        observer = Observer()
        try:
            observer.schedule(_PathEventHandler(self), os.path.dirname(self.watch_path), recursive=False)
            observer.start()
        except OSError as e:
            # inotify watch limits and unsupported filesystems end up here
            logger.warning(f'File watch unavailable for {self.path}, polling instead: {e}')
            prom.record_polling_fallback()
            self.state = FollowState.POLLING
            return
        self._observer = observer

    def _stop_observer(self):
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.unschedule_all()
        observer.stop()
        # stop() already released the watch; only the thread exit is left to wait for
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            observer.join(timeout=OBSERVER_JOIN_TIMEOUT)
        else:
            loop.run_in_executor(None, observer.join, OBSERVER_JOIN_TIMEOUT)

    def notify(self):
        """Called from the watchdog thread when the file changed."""
        loop = self._loop
        if self.closed or loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._set_changed)

    def _set_changed(self):
        if self._changed is not None:
            self._changed.set()

    async def _run(self):
        while not self.closed:
            if self.state == FollowState.POLLING:
                try:
                    await asyncio.wait_for(self._changed.wait(), timeout=self.poll_interval)
                except TimeoutError:
                    pass
            else:
                await self._changed.wait()
            self._changed.clear()
            await self.check()

    async def check(self):
        """Read and deliver whatever was appended since the last check."""
        try:
            lines = await anyio.to_thread.run_sync(self._read_new_lines)
        except OSError as e:
            self._record_error(e)
            return
        self.error_count = 0
        for line in lines:
            if self.closed:
                return
            try:
                self.on_line(line)
            except Exception:
                logger.exception(f'Line callback failed for {self.path}')

    def _record_error(self, error: OSError):
        self.error_count += 1
        logger.warning(f'Error reading {self.path} ({self.error_count}/{self.max_errors}): {error}')
        if self.state == FollowState.WATCHING and self.error_count >= self.max_errors:
            self._switch_to_polling()

    def _switch_to_polling(self):
        logger.warning(f'Too many errors, switching to polling for {self.path}')
        self._stop_observer()
        self.state = FollowState.POLLING
        prom.record_polling_fallback()

    def _read_new_lines(self) -> list[RawLine]:
        size = os.stat(self.path).st_size
        if size < self.offset:
            logger.info(f'File truncated, restarting from the beginning: {self.path}')
            self.offset = 0
            self.line_number = 0
            self._partial = b''
        if size == self.offset:
            return []

        with open(self.path, 'rb') as f:
            f.seek(self.offset)
            data = f.read(size - self.offset)
        self.offset += len(data)

        *complete, self._partial = (self._partial + data).split(b'\n')
        lines = []
        for raw in complete:
            self.line_number += 1
            text = raw.decode(ENCODING, errors='replace').rstrip('\r')
            lines.append(RawLine(content=text, line_number=self.line_number, source_path=self.path))
        return lines

    def cancel(self):
        """Release the watch or poll timer now. Idempotent."""
        if self.closed:
            return
        self.closed = True
        self._stop_observer()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


async def follow(
    path: str,
    on_line: Callable[[RawLine], None],
    from_line: int = 0,
    read_compressed: bool = False,
    poll_interval: float = POLL_INTERVAL,
    use_watcher: bool = True,
) -> FileFollower:
    """Deliver existing lines past from_line, then keep delivering appended lines.

    Compressed files cannot grow in place: they are read once and delivered
    as a finite sequence, and the returned follower is already closed.
    The caller owns the returned follower and must cancel it.
    """
    info = await anyio.to_thread.run_sync(inspect, path)
    follower = FileFollower(path, on_line, poll_interval=poll_interval, use_watcher=use_watcher)

    if info.compressed:
        lines = await anyio.to_thread.run_sync(read_lines, path, 0, from_line, read_compressed)
        for line in lines:
            on_line(line)
        follower.closed = True
        return follower

    if info.exists and info.readable:
        existing, line_number, offset = await anyio.to_thread.run_sync(scan_existing, path, from_line)
        for line in existing:
            on_line(line)
        follower.line_number = line_number
        follower.offset = offset

    await follower.start()
    return follower
