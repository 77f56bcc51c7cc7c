"""Compression and rotation detection for log file paths.

Detection is purely name based: rotated archives are extremely common in
/var/log and opening each one to sniff magic bytes would make directory
listings slow.
"""

import os
import re
from enum import Enum


class CompressionFormat(str, Enum):
    """Compression formats recognised by file extension."""

    NONE = 'none'
    GZIP = 'gzip'
    BZIP2 = 'bzip2'
    XZ = 'xz'

    @classmethod
    def from_path(cls, path: str) -> 'CompressionFormat':
        return detect_compression(path)


_EXTENSION_FORMATS = {
    '.gz': CompressionFormat.GZIP,
    '.tgz': CompressionFormat.GZIP,
    '.bz2': CompressionFormat.BZIP2,
    '.xz': CompressionFormat.XZ,
}

# Only gzip can be decompressed when reading; the other formats are listed but read as empty.
READABLE_FORMATS = frozenset({CompressionFormat.GZIP})

ROTATED_RE = re.compile(r'\.\d+(\.(gz|bz2|xz))?$')
COMPRESSED_SUFFIX_RE = re.compile(r'\.(gz|bz2|xz)$', re.IGNORECASE)

# Applied in order by normalize_log_path
_NUMERIC_ROTATION_RE = re.compile(r'\.\d+(\.(gz|bz2|xz))?$')
_DATE_ROTATION_RE = re.compile(r'\.\d{8}(\.(gz|bz2|xz))?$')
_COMPRESSION_RE = re.compile(r'\.(gz|bz2|xz)$')


def detect_compression(path: str) -> CompressionFormat:
    """Detect the compression format of a file from its extension."""
    lower = path.lower()
    if lower.endswith('.tar.gz'):
        return CompressionFormat.GZIP
    _, ext = os.path.splitext(lower)
    return _EXTENSION_FORMATS.get(ext, CompressionFormat.NONE)


def is_compressed(path: str) -> bool:
    """Check whether a path names a compressed file (.gz, .bz2, .xz, .tar.gz)."""
    return detect_compression(path) != CompressionFormat.NONE


def is_rotated(path: str) -> bool:
    """Check whether the file name carries a rotation suffix (access.log.1, syslog.2.gz)."""
    return ROTATED_RE.search(os.path.basename(path)) is not None


def is_archive_path(path: str) -> bool:
    """Compressed files and tarballs, excluded from fast scans."""
    lower = path.lower()
    return lower.endswith('.gz') or lower.endswith('.tgz') or lower.endswith('.tar.gz')


def normalize_log_path(path: str) -> str:
    """Strip rotation and compression suffixes from a log path.

    access.log.1, access.log.1.gz, access.log.20240101 and access.log.gz
    all normalise to access.log, so per-file settings keyed by the
    normalised path apply to every rotated variant.
    """
    normalized = _NUMERIC_ROTATION_RE.sub('', path)
    normalized = _DATE_ROTATION_RE.sub('', normalized)
    normalized = _COMPRESSION_RE.sub('', normalized)
    return normalized
