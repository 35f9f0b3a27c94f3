"""Exception hierarchy for branchlog.

Every failure the interactive session can recover from derives from
BranchlogError so callers can surface it as a notice instead of crashing.
"""


class BranchlogError(Exception):
    """Base class for recoverable branchlog failures."""


class GitError(BranchlogError):
    """The repository root or current branch could not be resolved."""


class PersistenceError(BranchlogError):
    """A branch log could not be read, parsed, or written."""


class EntryNotFound(PersistenceError):
    """No entry with the requested id exists on the branch."""


class CaptureError(BranchlogError):
    """The microphone stream could not be opened or read."""


class ModelUnavailable(BranchlogError):
    """The transcription model could not be located, fetched, or loaded."""


class TranscriptionError(BranchlogError):
    """The transcription engine failed on a captured buffer."""
