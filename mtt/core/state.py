"""In-memory tracker state: the active timers and the committed history.

One ``TrackerState`` is owned by one ``TimeTracker`` and handed to whatever
needs to look at it, never shared through module globals.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StateSnapshot:
    active: dict
    history: tuple


@dataclass
class TrackerState:
    active: dict = field(default_factory=dict)    # timer id -> ActiveTimer
    history: list = field(default_factory=list)   # HistoricalEntry, oldest first

    def snapshot(self):
        """Copy everything a rollback needs. Timers are copied, entries are immutable."""
        return StateSnapshot(
            active={timer_id: timer.copy() for timer_id, timer in self.active.items()},
            history=tuple(self.history),
        )

    def restore(self, snapshot):
        """Put the state back to ``snapshot``, in place.

        Timers that survived the failed operation keep their identity and get
        their fields reset, so references held by callers stay valid.
        """
        for timer_id in list(self.active):
            if timer_id not in snapshot.active:
                del self.active[timer_id]
        for timer_id, saved in snapshot.active.items():
            current = self.active.get(timer_id)
            if current is None:
                self.active[timer_id] = saved.copy()
                continue
            current.project = saved.project
            current.task = saved.task
            current.notes = saved.notes
            current.restore_lifecycle_fields(saved.lifecycle_fields())
        self.history[:] = snapshot.history
