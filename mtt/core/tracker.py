import threading
import uuid
from dataclasses import dataclass
from mtt.common.logger import log
from mtt.core.config import Settings
from mtt.core.errors import DuplicateActiveTimer, NetworkError, UnknownTimer, ValidationError
from mtt.core.gateway import ACTIVE_STATE_DOC, HISTORY_DOC
from mtt.core.reconcile import Reconciliation
from mtt.core.state import TrackerState
from mtt.core.timer_state import ActiveTimer, HistoricalEntry, utc_now
from mtt.util import DEFAULT_PROJECT, DEFAULT_TASK, duplicate_key, parse_topic, sanitize_input


@dataclass(frozen=True)
class StopResult:
    timer_id: str
    entry: HistoricalEntry | None

    # True when the timer had no elapsed time and was thrown away instead of committed.
    @property
    def discarded(self):
        return self.entry is None


# This object is the timer lifecycle engine. It owns the in-memory TrackerState, and every mutating call
# runs under a Reconciliation so a failed save leaves memory exactly as it was. Calls are serialized, so a
# second call waits for the first one's saves to finish instead of racing them.
class TimeTracker:

    def __init__(self, gateway, settings=None, clock=utc_now, id_factory=None):
        self.gateway = gateway
        self.settings = settings or getattr(gateway, "settings", None) or Settings()
        self.clock = clock
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.state = TrackerState()
        self._lock = threading.RLock()

    #region === Startup ===

    # Loads committed history (fatal on failure, NetworkError propagates) and then the active set (recoverable,
    # the tracker starts empty and the unreadable document is copied aside). Returns self for chaining.
    def load(self):
        with self._lock:
            try:
                history = self.gateway.load_history()
            except NetworkError:
                log.error("FATAL: could not load historical data, refusing to continue.", exc_info=True)
                raise
            try:
                active = self.gateway.load_active_set()
            except NetworkError:
                log.warning("Could not restore the previous session's timers, starting fresh.", exc_info=True)
                # The next save replaces the unreadable document, keep what was there
                self.gateway.preserve_copy(ACTIVE_STATE_DOC, "unreadable")
                active = {}
            self.state.history[:] = history
            self.state.active.clear()
            self.state.active.update(active)
            log.info(f"Tracker loaded with {len(active)} active timers and {len(history)} historical entries")
        return self

    #endregion === Startup ===

    #region === Queries ===

    @property
    def active_timers(self):
        return dict(self.state.active)

    @property
    def history(self):
        return list(self.state.history)

    def get(self, timer_id):
        timer = self.state.active.get(timer_id)
        if timer is None:
            raise UnknownTimer(timer_id)
        return timer

    def elapsed_ms(self, timer_id):
        return self.get(timer_id).elapsed_ms(self.clock())

    def has_running_timers(self):
        return any(not t.is_paused for t in self.state.active.values())

    # Resolves a full id or a unique id prefix to the full id.
    def resolve_id(self, prefix):
        if prefix in self.state.active:
            return prefix
        matches = [timer_id for timer_id in self.state.active if timer_id.startswith(prefix)]
        if len(matches) != 1:
            raise UnknownTimer(prefix)
        return matches[0]

    def find_duplicate(self, project, task):
        key = duplicate_key(project, task)
        for timer_id, timer in self.state.active.items():
            if duplicate_key(timer.project, timer.task) == key:
                return timer_id
        return None

    #endregion === Queries ===

    #region === Lifecycle operations ===

    def start(self, project, task):
        """Start a new running timer for (project, task) and return its id.

        Raises ``DuplicateActiveTimer`` when a timer with the same
        case-insensitive key is already active, running or paused.
        """
        limit = self.settings.max_input_length
        project = sanitize_input(project, limit) or DEFAULT_PROJECT
        task = sanitize_input(task, limit) or DEFAULT_TASK
        with self._lock:
            if self.find_duplicate(project, task) is not None:
                log.info(f"Refused to start duplicate timer '{project} / {task}'")
                raise DuplicateActiveTimer(project, task)
            timer_id = self._id_factory()
            with Reconciliation(self.state, self.gateway, "start") as rec:
                self.state.active[timer_id] = ActiveTimer.started(project, task, self.clock())
                rec.persist_active_set()
            log.info(f"Started timer '{project} / {task}' ({timer_id})")
            return timer_id

    # Starts a timer from a combined "Project / Task" topic.
    def start_topic(self, topic):
        parsed = parse_topic(topic, self.settings.max_input_length)
        if parsed is None:
            raise ValidationError("Please enter a Project / Task.")
        return self.start(*parsed)

    # Pauses a running timer or resumes a paused one. Returns the timer.
    def toggle(self, timer_id):
        with self._lock:
            timer = self.get(timer_id)
            with Reconciliation(self.state, self.gateway, "toggle") as rec:
                now = self.clock()
                if timer.is_paused:
                    timer.resume(now)
                else:
                    timer.pause(now)
                rec.persist_active_set()
            log.info(f"{'Paused' if timer.is_paused else 'Resumed'} timer '{timer.project} / {timer.task}' ({timer_id})")
            return timer

    def stop(self, timer_id):
        """Commit a timer to history and remove it from the active set.

        A timer with no elapsed time is discarded as if ``delete`` had been
        called, and the returned ``StopResult`` says so. Otherwise both
        documents are saved and, if either save fails, both changes are
        rolled back together. Both documents are validated before the
        first one is written, so a ``ValidationError`` (e.g. an oversized
        history) leaves the disk untouched.
        """
        with self._lock:
            timer = self.get(timer_id)
            end_time = self.clock()
            total_ms = timer.elapsed_ms(end_time)
            if total_ms <= 0:
                log.info(f"Timer '{timer.project} / {timer.task}' ({timer_id}) had zero duration, discarding it")
                self.delete(timer_id)
                return StopResult(timer_id, None)

            with Reconciliation(self.state, self.gateway, "stop") as rec:
                entry = HistoricalEntry.from_timer(timer, total_ms, end_time)
                del self.state.active[timer_id]
                self.state.history.append(entry)
                rec.persist(ACTIVE_STATE_DOC, HISTORY_DOC)
            log.info(f"Stopped timer '{entry.project} / {entry.task}' ({timer_id}) after {entry.duration_seconds}s")
            return StopResult(timer_id, entry)

    # Discards a timer without committing it. Asking the user first is the caller's job.
    def delete(self, timer_id):
        with self._lock:
            timer = self.get(timer_id)
            with Reconciliation(self.state, self.gateway, "delete") as rec:
                del self.state.active[timer_id]
                rec.persist_active_set()
            log.info(f"Deleted timer '{timer.project} / {timer.task}' ({timer_id})")

    # Replaces a timer's notes. Notes are free text and are kept verbatim.
    def set_notes(self, timer_id, notes):
        if not isinstance(notes, str):
            raise ValidationError("Notes must be text.")
        with self._lock:
            timer = self.get(timer_id)
            with Reconciliation(self.state, self.gateway, "notes") as rec:
                timer.notes = notes
                rec.persist_active_set()
            log.debug(f"Updated notes of '{timer.project} / {timer.task}' ({timer_id})")
            return timer

    #endregion === Lifecycle operations ===
