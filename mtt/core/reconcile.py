"""Snapshot, mutate, persist, then commit or roll back.

Every tracker mutation runs inside a ``Reconciliation``::

    with Reconciliation(state, gateway, "toggle") as rec:
        timer.pause(now)
        rec.persist_active_set()

Entering takes the snapshot. Leaving with any exception restores it, and
re-writes every document this attempt had already saved, so a half-applied
two-document change (``stop``) is undone on disk as well as in memory.
``persist`` validates every document it is given before writing any of
them. The exception always propagates to the caller.
"""

from mtt.common.logger import log
from mtt.core.errors import ConcurrencyError, PersistenceError
from mtt.core.gateway import ACTIVE_STATE_DOC, HISTORY_DOC


class Reconciliation:

    def __init__(self, state, gateway, operation):
        self.state = state
        self.gateway = gateway
        self.operation = operation
        self.snapshot = None
        self.persisted = []

    def __enter__(self):
        self.snapshot = self.state.snapshot()
        self.persisted = []
        return self

    # Saves the named documents in order. All of them are validated first, so a ValidationError on any one of
    # them means nothing was written.
    def persist(self, *documents):
        for name in documents:
            if name == ACTIVE_STATE_DOC:
                self.gateway.prepare_active_set(self.state.active)
            else:
                self.gateway.prepare_history(self.state.history)
        for name in documents:
            if name == ACTIVE_STATE_DOC:
                self.gateway.save_active_set(self.state.active)
            else:
                self.gateway.save_history(self.state.history)
            self.persisted.append(name)

    def persist_active_set(self):
        self.persist(ACTIVE_STATE_DOC)

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            log.debug(f"Committed '{self.operation}' ({', '.join(self.persisted) or 'nothing persisted'})")
            return False
        self.state.restore(self.snapshot)
        log.warning(f"Rolled back '{self.operation}' after {exc_type.__name__}: {exc}")
        self._undo_persisted()
        return False

    # Writes the snapshot's version of each document that already went out. A failure here is logged and left
    # alone: the original error is the one the caller needs to see.
    def _undo_persisted(self):
        for name in reversed(self.persisted):
            try:
                if name == ACTIVE_STATE_DOC:
                    self.gateway.save_active_set(self.snapshot.active)
                else:
                    self.gateway.save_history(list(self.snapshot.history))
                log.info(f"Restored '{name}' on disk after rolling back '{self.operation}'")
            except (PersistenceError, ConcurrencyError):
                log.error(f"Could not restore '{name}' on disk after rolling back '{self.operation}'; "
                          f"memory and disk now differ until the next successful save", exc_info=True)
