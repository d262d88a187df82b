"""Typed load/save over the two persisted documents.

* ``active-state.json`` maps timer id -> timer object (see ``ActiveTimer.to_dict``).
* ``data.json`` is the ordered list of committed ``HistoricalEntry`` objects.

Every save replaces the whole document. Payloads are validated and
size-checked before the store is touched, so a ``ValidationError`` never
leaves anything behind on disk.
"""

import json
import time

from mtt.common.logger import log
from mtt.common.setup import PATHS
from mtt.core.config import Settings
from mtt.core.errors import NetworkError, ValidationError
from mtt.core.snapshot import create_snapshot, prune_snapshots
from mtt.core.store import AtomicFileStore
from mtt.core.timer_state import ActiveTimer, HistoricalEntry, to_timestamp, utc_now

ACTIVE_STATE_DOC = "active-state.json"
HISTORY_DOC = "data.json"

# Empty document bodies written on first start.
_EMPTY_DOCUMENTS = {
    ACTIVE_STATE_DOC: "{}",
    HISTORY_DOC: "[]",
}


class PersistenceGateway:

    def __init__(self, store=None, settings=None, snapshot_dir=None, clock=utc_now):
        self.settings = settings or Settings()
        self.store = store or AtomicFileStore(PATHS.current, lock_timeout=self.settings.lock_timeout_seconds)
        self.snapshot_dir = snapshot_dir or PATHS.snapshots
        self.clock = clock
        self._started = time.monotonic()

    #region === Startup ===

    # Creates any missing document with its empty default and clears temp files of interrupted writes.
    def initialize(self):
        for name, empty in _EMPTY_DOCUMENTS.items():
            self.store.remove_orphaned_temp_files(name)
            if self.store.exists(name):
                log.info(f"Document '{name}' already exists in '{self.store.directory}'")
                continue
            log.info(f"Creating new document '{name}' in '{self.store.directory}'")
            self.store.write_text(name, empty)

    #endregion === Startup ===

    #region === Active set ===

    def load_active_set(self):
        raw = self._load_json(ACTIVE_STATE_DOC)
        if not isinstance(raw, dict):
            raise NetworkError(f"'{ACTIVE_STATE_DOC}' does not hold an object", ACTIVE_STATE_DOC)
        timers = {}
        skipped = []
        for timer_id, data in raw.items():
            try:
                timers[timer_id] = ActiveTimer.from_dict(data)
            except (TypeError, ValueError) as exc:
                log.warning(f"Skipping malformed timer '{timer_id}' in '{ACTIVE_STATE_DOC}': {exc}")
                skipped.append(timer_id)
        if skipped:
            self.preserve_copy(ACTIVE_STATE_DOC, "malformed_timers")
        log.info(f"Loaded {len(timers)} active timers from '{ACTIVE_STATE_DOC}'")
        return timers

    # Validates and serializes the active set without writing it. Raises ValidationError.
    def prepare_active_set(self, timers):
        payload = {}
        for timer_id, timer in timers.items():
            if not isinstance(timer_id, str) or not timer_id:
                raise ValidationError(f"Timer ids must be non-empty strings, got {timer_id!r}", ACTIVE_STATE_DOC)
            if not isinstance(timer, ActiveTimer):
                raise ValidationError(f"Timer '{timer_id}' is not an ActiveTimer", ACTIVE_STATE_DOC)
            if timer.is_paused == (timer.start_time is not None):
                raise ValidationError(f"Timer '{timer_id}' must have a startTime exactly when it is running",
                                      ACTIVE_STATE_DOC)
            if timer.accumulated_ms < 0:
                raise ValidationError(f"Timer '{timer_id}' has negative accumulatedMs", ACTIVE_STATE_DOC)
            payload[timer_id] = timer.to_dict()
        return self._serialize(payload, ACTIVE_STATE_DOC)

    def save_active_set(self, timers):
        content = self.prepare_active_set(timers)
        self.store.write_text(ACTIVE_STATE_DOC, content)
        log.info(f"Active state saved ({len(timers)} timers)")

    #endregion === Active set ===

    #region === History ===

    def load_history(self):
        raw = self._load_json(HISTORY_DOC)
        if not isinstance(raw, list):
            raise NetworkError(f"'{HISTORY_DOC}' does not hold a list", HISTORY_DOC)
        entries = []
        for index, data in enumerate(raw):
            try:
                entries.append(HistoricalEntry.from_dict(data))
            except (TypeError, ValueError) as exc:
                raise NetworkError(f"Entry {index} in '{HISTORY_DOC}' is malformed: {exc}", HISTORY_DOC) from exc
        log.info(f"Loaded {len(entries)} historical entries from '{HISTORY_DOC}'")
        return entries

    # Validates and serializes the history without writing it. Raises ValidationError.
    def prepare_history(self, entries):
        payload = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, HistoricalEntry):
                raise ValidationError(f"Entry {index} is not a HistoricalEntry", HISTORY_DOC)
            if entry.total_duration_ms <= 0:
                raise ValidationError(f"Entry {index} has a non-positive duration", HISTORY_DOC)
            payload.append(entry.to_dict())
        return self._serialize(payload, HISTORY_DOC)

    def save_history(self, entries):
        content = self.prepare_history(entries)
        self.store.write_text(HISTORY_DOC, content, before_replace=self._snapshot_history)
        log.info(f"Historical data saved ({len(entries)} entries)")

    # Runs under the history write lock, right before the replacement. Never fails the save.
    def _snapshot_history(self):
        if not self.settings.snapshot_keep_history or not self.store.exists(HISTORY_DOC):
            return
        try:
            create_snapshot(self.store.read_text(HISTORY_DOC), self.snapshot_dir, "history_replace")
            prune_snapshots(self.snapshot_dir)
        except OSError:
            log.warning("Could not snapshot the history document before replacing it", exc_info=True)

    #endregion === History ===

    # Copies the raw text of a document into the snapshot directory before it gets overwritten, so entries this
    # process could not read are never lost for good. Returns the copy's path, or None when there was nothing to
    # copy or the copy failed.
    def preserve_copy(self, name, reason):
        try:
            text = self.store.read_text(name)
        except (OSError, UnicodeDecodeError):
            return None
        prefix = name.rsplit(".", 1)[0] + "_"
        try:
            path = create_snapshot(text, self.snapshot_dir, reason, prefix=prefix)
        except OSError:
            log.warning(f"Could not preserve a copy of '{name}'", exc_info=True)
            return None
        log.warning(f"Preserved the previous '{name}' as '{path}' ({reason})")
        return path

    #region === Health ===

    def health(self):
        documents = {}
        for name, expected in ((ACTIVE_STATE_DOC, dict), (HISTORY_DOC, list)):
            exists = self.store.exists(name)
            readable = False
            if exists:
                try:
                    readable = isinstance(self._load_json(name), expected)
                except NetworkError:
                    readable = False
            documents[name] = {"exists": exists, "readable": readable}
        healthy = all(d["exists"] and d["readable"] for d in documents.values())
        return {
            "status": "ok" if healthy else "degraded",
            "timestamp": to_timestamp(self.clock()),
            "uptime": round(time.monotonic() - self._started, 3),
            "documents": documents,
        }

    #endregion === Health ===

    def _load_json(self, name):
        try:
            return json.loads(self.store.read_text(name))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            log.error(f"Error reading document '{name}': {exc}")
            raise NetworkError(f"Could not read '{name}': {exc}", name) from exc

    def _serialize(self, payload, name):
        content = json.dumps(payload, indent=2)
        size = len(content.encode("utf-8"))
        if size > self.settings.max_payload_bytes:
            raise ValidationError(
                f"'{name}' payload is {size} bytes, over the {self.settings.max_payload_bytes} byte limit",
                name, oversized=True)
        return content
