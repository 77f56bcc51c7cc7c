"""logpeek - log reading, parsing, tailing and analytics."""

from logpeek.__version__ import __version__


__all__ = ['__version__']
