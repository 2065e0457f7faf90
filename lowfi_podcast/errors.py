from __future__ import annotations


class LowfiError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(LowfiError):
    """Configuration file missing, unreadable or malformed. Fatal at startup."""


class ToolNotFoundError(ConfigError):
    """A required external executable could not be located."""


class NetworkError(LowfiError):
    """Channel feed could not be retrieved (transport error or non-200 status)."""


class ParseError(LowfiError):
    """Channel feed document is malformed."""


class DownloadError(LowfiError):
    """External download tool failed or timed out."""


class TranscodeError(LowfiError):
    """External encoder failed, timed out, or the result could not be committed."""


class StorageError(LowfiError):
    """Filesystem access to the artifact store failed."""


class FormatError(LowfiError):
    """A feed entry carries a timestamp that cannot be parsed."""
