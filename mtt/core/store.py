"""Atomic, serialized replacement of whole documents on local disk.

A write goes to a uniquely named temporary file in the target's directory,
is flushed and fsynced, and is then renamed over the target with
``os.replace``. Readers therefore see either the complete old document or
the complete new one.

Writers to the same document are serialized twice over: an in-process lock
keyed by the document path (QLockFile objects must not be shared between
threads) and a ``QLockFile`` sidecar (``<document>.lock``) that also covers
other processes such as the command line running next to the server. Qt
removes a sidecar whose owning process is gone, so a crash never leaves a
document locked for good.
"""

import os
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path

from PySide6.QtCore import QLockFile

from mtt.common.logger import log
from mtt.core.errors import ConcurrencyError, PersistenceError

TEMP_SUFFIX = ".tmp"
LOCK_SUFFIX = ".lock"

# One in-process lock per absolute document path, shared by every store instance.
_THREAD_LOCKS = {}
_THREAD_LOCKS_GUARD = threading.Lock()


def _thread_lock_for(path):
    key = str(Path(path).resolve())
    with _THREAD_LOCKS_GUARD:
        lock = _THREAD_LOCKS.get(key)
        if lock is None:
            lock = _THREAD_LOCKS[key] = threading.Lock()
        return lock


class AtomicFileStore:

    def __init__(self, directory, lock_timeout=5.0, stale_lock_ms=30_000):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.lock_timeout = float(lock_timeout)
        self.stale_lock_ms = int(stale_lock_ms)

    def path_for(self, name):
        return self.directory / name

    def exists(self, name):
        return self.path_for(name).is_file()

    # Reads need no lock: the target is only ever swapped in whole.
    def read_text(self, name):
        with open(self.path_for(name), "r", encoding="utf-8") as f:
            return f.read()

    @contextmanager
    def lock(self, name, timeout=None):
        """Hold the exclusive write lock for ``name``.

        Waits at most ``timeout`` seconds (the store's ``lock_timeout`` by
        default) in total and raises ``ConcurrencyError`` when that runs out.
        """
        timeout = self.lock_timeout if timeout is None else timeout
        target = self.path_for(name)
        deadline = time.monotonic() + timeout

        thread_lock = _thread_lock_for(target)
        if not thread_lock.acquire(timeout=max(0.0, timeout)):
            log.warning(f"Timed out after {timeout}s waiting for the in-process write lock on '{name}'")
            raise ConcurrencyError(f"Could not acquire the write lock for '{name}' within {timeout}s", name)
        try:
            lock_file = QLockFile(str(target) + LOCK_SUFFIX)
            lock_file.setStaleLockTime(self.stale_lock_ms)
            remaining_ms = max(0, int((deadline - time.monotonic()) * 1000))
            if not lock_file.tryLock(remaining_ms):
                error = lock_file.error()
                if error == QLockFile.LockError.LockFailedError:
                    log.warning(f"Timed out after {timeout}s waiting for lock file '{target}{LOCK_SUFFIX}'")
                    raise ConcurrencyError(f"Could not acquire the write lock for '{name}' within {timeout}s", name)
                raise PersistenceError(f"Could not create the lock file for '{name}' ({error.name})", name)
            try:
                yield
            finally:
                lock_file.unlock()
        finally:
            thread_lock.release()

    # Durably replaces the named document with `content`. On any failure the target is left untouched and
    # PersistenceError (or ConcurrencyError, for a lock timeout) is raised. `before_replace` runs under the
    # lock, before anything is written.
    def write_text(self, name, content, before_replace=None):
        target = self.path_for(name)
        with self.lock(name):
            if before_replace is not None:
                before_replace()
            temp_path = None
            try:
                temp_path = self._write_temp(target, content)
                self._replace(temp_path, target)
            except OSError as exc:
                if temp_path is not None:
                    try: temp_path.unlink(missing_ok=True)
                    except OSError: log.warning(f"Failed to clean up temp file '{temp_path}'")
                log.error(f"Failed to write '{target}': {exc}")
                raise PersistenceError(f"Failed to write '{name}': {exc}", name) from exc
        log.info(f"Wrote '{target}' atomically ({len(content)} chars)")

    def _write_temp(self, target, content):
        fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=TEMP_SUFFIX)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        return temp_path

    def _replace(self, temp_path, target):
        os.replace(temp_path, target)
        self._fsync_directory(target.parent)

    # Makes the rename itself durable where the platform allows opening directories. Best effort: the
    # replacement has already happened, so a failure here must not be reported as a failed write.
    @staticmethod
    def _fsync_directory(directory):
        if os.name != "posix":
            return
        try:
            fd = os.open(directory, os.O_RDONLY)
            try:
                os.fsync(fd)
            finally:
                os.close(fd)
        except OSError:
            log.warning(f"Could not fsync directory '{directory}'", exc_info=True)

    # Deletes temp files left behind by writes to `name` that never reached the rename (e.g. the process was
    # killed). Runs under the document lock so an in-flight write keeps its temp file.
    def remove_orphaned_temp_files(self, name):
        removed = 0
        with self.lock(name):
            for path in self.directory.glob(f".{name}.*{TEMP_SUFFIX}"):
                try:
                    path.unlink()
                    removed += 1
                except OSError:
                    log.warning(f"Could not remove orphaned temp file '{path}'")
        if removed:
            log.info(f"Removed {removed} orphaned temp files from '{self.directory}'")
        return removed
