"""Exception hierarchy shared across Helium modules."""


class HeliumError(Exception):
    """Base class for errors raised by the orchestration core."""


class ConfigError(HeliumError):
    """Invalid configuration (missing credential, unknown model or provider).

    Raised before any network call and never retried.
    """


class ProviderStreamError(HeliumError):
    """The backend reported an error inside an otherwise successful stream."""


class OldStringNotFoundError(HeliumError, ValueError):
    """The text to replace does not occur in the file content."""

    def __init__(self, path: str = "") -> None:
        self.path = path
        super().__init__("old_string not found in content" + (f": {path}" if path else ""))


class CompactionError(HeliumError):
    """Summarizing the old transcript prefix failed; context is unchanged."""
