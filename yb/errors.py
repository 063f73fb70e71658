"""Error taxonomy for yb.

Only ``SpecParseError`` and an unrecoverable ``StreamUnavailable`` abort a
whole invocation. ``RepoInspectionWarning``, ``PlanConflict`` and
``ExecutionFailure`` are scoped to a single repository (or layer): they are
instantiated and collected on result records rather than raised past the
repository boundary.
"""

from __future__ import annotations


class YbError(Exception):
    """Base class for all yb errors."""


class SpecParseError(YbError):
    """A spec document is malformed or uses an unsupported format version."""

    def __init__(self, message: str, source: str = ""):
        self.source = source
        super().__init__(f"{source}: {message}" if source else message)


class SpecNotFound(YbError):
    """No spec with the requested name exists in any stream."""


class StreamDirty(YbError):
    """The stream checkout has local modifications or has diverged."""


class StreamUnavailable(YbError):
    """The stream could not be reached (network failure, missing checkout)."""


class WorkspaceNotFound(YbError):
    """No ``.yb`` directory was found."""


class NotManagedError(YbError):
    """The operation needs a desired state but the workspace is bare."""


class RepoInspectionWarning(YbError):
    """Inspection of one repository was degraded (e.g. fetch failed)."""

    def __init__(self, repo: str, message: str):
        self.repo = repo
        self.message = message
        super().__init__(f"{repo}: {message}")


class PlanConflict(YbError):
    """A repository needs a destructive action that was not authorised."""

    def __init__(self, repo: str, reason: str):
        self.repo = repo
        self.reason = reason
        super().__init__(f"{repo}: {reason}")


class ExecutionFailure(YbError):
    """An action failed while being applied."""

    def __init__(self, repo: str, action: str, message: str):
        self.repo = repo
        self.action = action
        self.message = message
        super().__init__(f"{repo}: {action} failed: {message}")


class LayerConfigError(YbError):
    """The layer configuration file could not be parsed."""
