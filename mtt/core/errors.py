"""Error taxonomy shared by the store, the gateway and the tracker.

``PersistenceError`` and ``ConcurrencyError`` are siblings, not parent and
child: a lock timeout is safe to retry straight away, a failed write
usually is not.
"""


class MttError(Exception):
    """Base class for every error this package raises on purpose."""

    code = "error"

    def __init__(self, message, document=None):
        super().__init__(message)
        self.message = message
        self.document = document


class NetworkError(MttError):
    """A document could not be reached, read, or parsed."""

    code = "network_error"


class ValidationError(MttError):
    """A payload was malformed or oversized. Raised before any write."""

    code = "validation_error"

    def __init__(self, message, document=None, oversized=False):
        super().__init__(message, document)
        self.oversized = oversized


class PersistenceError(MttError):
    """Writing a document to storage failed. The previous content is intact."""

    code = "persistence_error"


class ConcurrencyError(MttError):
    """The per-document write lock was not acquired in time."""

    code = "concurrency_error"


class DuplicateActiveTimer(MttError):
    code = "duplicate_active_timer"

    def __init__(self, project, task):
        super().__init__(f"The task '{project} / {task}' is already running.")
        self.project = project
        self.task = task


class UnknownTimer(MttError):
    code = "unknown_timer"

    def __init__(self, timer_id):
        super().__init__(f"No active timer with id '{timer_id}'.")
        self.timer_id = timer_id
