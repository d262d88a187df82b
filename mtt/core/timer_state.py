from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from mtt.common.logger import log


# Returns the current time as an aware UTC datetime. This is the default clock everywhere; tests inject their own.
def utc_now():
    return datetime.now(timezone.utc)

# Serializes a datetime to the absolute-time string format used in both documents, e.g.
# 2026-02-12T19:30:00.123Z
def to_timestamp(dt):
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

# Parses an absolute-time string back into an aware datetime. Raises ValueError on garbage.
def parse_timestamp(value):
    if not isinstance(value, str):
        raise ValueError(f"Expected a timestamp string, got {type(value).__name__}")
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

# Milliseconds between two datetimes, never negative (a clock stepping backwards must not eat banked time).
def _ms_between(start, end):
    return max(0, int((end - start) / timedelta(milliseconds=1)))


# This object is one tracked, not yet committed activity. While running, start_time is set and is_paused is False;
# while paused, start_time is None, is_paused is True, and accumulated_ms is the whole story.
class ActiveTimer:

    def __init__(self, project, task, start_time=None, accumulated_ms=0, is_paused=False, notes=""):
        self.project = project
        self.task = task
        self.start_time = start_time
        self.accumulated_ms = int(accumulated_ms)
        self.is_paused = is_paused
        self.notes = notes

    # Named constructor for a brand new, running timer.
    @classmethod
    def started(cls, project, task, now):
        log.debug(f"Creating running timer '{project} / {task}' at {to_timestamp(now)}")
        return cls(project, task, start_time=now, accumulated_ms=0, is_paused=False, notes="")

    # Total elapsed ms: banked time plus the current running interval, if any.
    def elapsed_ms(self, now):
        elapsed = self.accumulated_ms
        if not self.is_paused and self.start_time is not None:
            elapsed += _ms_between(self.start_time, now)
        return elapsed

    # Banks the running interval into accumulated_ms and clears start_time.
    def pause(self, now):
        if self.is_paused:
            return
        self.accumulated_ms = self.elapsed_ms(now)
        self.start_time = None
        self.is_paused = True
        log.debug(f"Paused timer '{self.project} / {self.task}' with {self.accumulated_ms}ms banked")

    def resume(self, now):
        if not self.is_paused:
            return
        self.start_time = now
        self.is_paused = False
        log.debug(f"Resumed timer '{self.project} / {self.task}' from {self.accumulated_ms}ms")

    # The fields a rollback has to put back exactly as they were.
    def lifecycle_fields(self):
        return {
            "is_paused": self.is_paused,
            "start_time": self.start_time,
            "accumulated_ms": self.accumulated_ms,
        }

    def restore_lifecycle_fields(self, fields):
        self.is_paused = fields["is_paused"]
        self.start_time = fields["start_time"]
        self.accumulated_ms = fields["accumulated_ms"]

    def copy(self):
        return ActiveTimer(self.project, self.task, self.start_time, self.accumulated_ms, self.is_paused, self.notes)

    def to_dict(self):
        return {
            "project": self.project,
            "task": self.task,
            "startTime": to_timestamp(self.start_time) if self.start_time is not None else None,
            "accumulatedMs": self.accumulated_ms,
            "isPaused": self.is_paused,
            "notes": self.notes,
        }

    # Builds a timer from its document form. Raises ValueError (or TypeError) when the entry is malformed,
    # including when it breaks the running/paused invariant.
    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise TypeError(f"Expected an object, got {type(data).__name__}")
        project = data.get("project")
        task = data.get("task")
        if not isinstance(project, str) or not isinstance(task, str):
            raise ValueError("'project' and 'task' must be strings")

        accumulated_ms = data.get("accumulatedMs", 0)
        if isinstance(accumulated_ms, bool) or not isinstance(accumulated_ms, (int, float)) or accumulated_ms < 0:
            raise ValueError(f"'accumulatedMs' must be a non-negative number, got {accumulated_ms!r}")

        is_paused = data.get("isPaused", False)
        if not isinstance(is_paused, bool):
            raise ValueError(f"'isPaused' must be a boolean, got {is_paused!r}")

        raw_start = data.get("startTime")
        start_time = parse_timestamp(raw_start) if raw_start is not None else None
        if is_paused and start_time is not None:
            raise ValueError("A paused timer cannot have a 'startTime'")
        if not is_paused and start_time is None:
            raise ValueError("A running timer needs a 'startTime'")

        notes = data.get("notes") or ""
        if not isinstance(notes, str):
            raise ValueError("'notes' must be a string")

        return cls(project, task, start_time, int(accumulated_ms), is_paused, notes)

    def __eq__(self, other):
        if not isinstance(other, ActiveTimer):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        state = "paused" if self.is_paused else "running"
        return f"ActiveTimer({self.project!r}, {self.task!r}, {state}, accumulated_ms={self.accumulated_ms})"


@dataclass(frozen=True)
class HistoricalEntry:
    """An immutable, committed record of completed tracked time."""

    project: str
    task: str
    total_duration_ms: int
    end_time: datetime
    created_at: datetime
    notes: str = ""

    # Whole seconds, halves rounded up.
    @property
    def duration_seconds(self):
        return (self.total_duration_ms + 500) // 1000

    # Converts a stopped timer into its history record. created_at is derived so that
    # created_at + total_duration_ms == end_time.
    @classmethod
    def from_timer(cls, timer, total_duration_ms, end_time):
        if total_duration_ms <= 0:
            raise ValueError("A historical entry needs a positive duration")
        return cls(
            project=timer.project,
            task=timer.task,
            total_duration_ms=int(total_duration_ms),
            end_time=end_time,
            created_at=end_time - timedelta(milliseconds=total_duration_ms),
            notes=timer.notes or "",
        )

    def to_dict(self):
        return {
            "project": self.project,
            "task": self.task,
            "totalDurationMs": self.total_duration_ms,
            "durationSeconds": self.duration_seconds,
            "endTime": to_timestamp(self.end_time),
            "createdAt": to_timestamp(self.created_at),
            "notes": self.notes,
        }

    # Builds an entry from its document form. Raises ValueError (or TypeError) when the entry is malformed.
    # A missing createdAt is derived from endTime.
    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise TypeError(f"Expected an object, got {type(data).__name__}")
        project = data.get("project")
        task = data.get("task")
        if not isinstance(project, str) or not isinstance(task, str):
            raise ValueError("'project' and 'task' must be strings")

        total = data.get("totalDurationMs")
        if isinstance(total, bool) or not isinstance(total, (int, float)) or round(total) <= 0:
            raise ValueError(f"'totalDurationMs' must be a positive number, got {total!r}")
        total = int(round(total))

        end_time = parse_timestamp(data.get("endTime"))
        raw_created = data.get("createdAt")
        if raw_created is None:
            created_at = end_time - timedelta(milliseconds=total)
        else:
            created_at = parse_timestamp(raw_created)

        notes = data.get("notes") or ""
        if not isinstance(notes, str):
            raise ValueError("'notes' must be a string")

        return cls(project, task, total, end_time, created_at, notes)
