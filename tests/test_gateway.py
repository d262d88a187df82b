"""Tests for PersistenceGateway: document contract, validation, health and history snapshots."""

import json
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from mtt.core.errors import NetworkError, PersistenceError, ValidationError
from mtt.core.gateway import ACTIVE_STATE_DOC, HISTORY_DOC
from mtt.core.timer_state import ActiveTimer, HistoricalEntry
from tests.helpers import FakeClock, make_gateway


class TestPersistenceGateway(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self._tmppath = Path(self.tmpdir)
        self.clock = FakeClock()
        self.gateway = make_gateway(self.tmpdir, clock=self.clock)
        self.current = self._tmppath / "current"

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _entry(self, project="A", task="1", ms=60_000):
        timer = ActiveTimer(project, task, None, ms, True, "")
        return HistoricalEntry.from_timer(timer, ms, self.clock())

    # ── Startup ──

    def test_initialize_creates_empty_documents(self):
        self.assertEqual(json.loads((self.current / ACTIVE_STATE_DOC).read_text()), {})
        self.assertEqual(json.loads((self.current / HISTORY_DOC).read_text()), [])

    def test_initialize_keeps_existing_documents(self):
        self.gateway.save_history([self._entry()])
        self.gateway.initialize()
        self.assertEqual(len(self.gateway.load_history()), 1)

    # ── Active set ──

    def test_active_set_document_format(self):
        running = ActiveTimer.started("Writing", "Draft", self.clock())
        paused = ActiveTimer("Ops", "Email", None, 1234, True, "inbox zero")
        self.gateway.save_active_set({"id-1": running, "id-2": paused})

        on_disk = json.loads((self.current / ACTIVE_STATE_DOC).read_text())
        self.assertEqual(set(on_disk), {"id-1", "id-2"})
        self.assertEqual(on_disk["id-1"]["startTime"], "2026-02-12T14:30:00.000Z")
        self.assertIsNone(on_disk["id-2"]["startTime"])
        self.assertEqual(on_disk["id-2"]["accumulatedMs"], 1234)
        self.assertEqual(on_disk["id-2"]["notes"], "inbox zero")

        loaded = self.gateway.load_active_set()
        self.assertEqual(loaded["id-1"], running)
        self.assertEqual(loaded["id-2"], paused)

    def test_save_active_set_rejects_broken_timer(self):
        broken = ActiveTimer("A", "1", None, 0, False)  # running without a startTime
        with self.assertRaises(ValidationError):
            self.gateway.save_active_set({"id": broken})
        with self.assertRaises(ValidationError):
            self.gateway.save_active_set({"": ActiveTimer("A", "1", None, 0, True)})
        with self.assertRaises(ValidationError):
            self.gateway.save_active_set({"id": {"project": "A"}})
        self.assertEqual(self.gateway.load_active_set(), {})

    def test_load_active_set_malformed_raises_network_error(self):
        (self.current / ACTIVE_STATE_DOC).write_text("{not json")
        with self.assertRaises(NetworkError):
            self.gateway.load_active_set()

        (self.current / ACTIVE_STATE_DOC).write_text("[]")
        with self.assertRaises(NetworkError):
            self.gateway.load_active_set()

    def test_load_active_set_skips_malformed_timers(self):
        good = ActiveTimer("Ops", "Email", None, 1234, True)
        (self.current / ACTIVE_STATE_DOC).write_text(json.dumps({
            "good": good.to_dict(),
            "running-without-start": {"project": "A", "task": "1", "startTime": None, "isPaused": False},
            "not-an-object": 42,
        }))
        self.assertEqual(self.gateway.load_active_set(), {"good": good})

        copies = list((self._tmppath / "snapshots").glob("active-state_*.json"))
        self.assertEqual(len(copies), 1)
        self.assertIn("running-without-start", copies[0].read_text(encoding="utf-8"))

    def test_preserved_copies_are_never_pruned(self):
        self.gateway.preserve_copy(ACTIVE_STATE_DOC, "unreadable")
        for i in range(12):
            self.gateway.save_history([self._entry(ms=1_000 + i)])
        self.assertEqual(len(list((self._tmppath / "snapshots").glob("active-state_*.json"))), 1)

    def test_load_missing_document_raises_network_error(self):
        (self.current / ACTIVE_STATE_DOC).unlink()
        with self.assertRaises(NetworkError) as ctx:
            self.gateway.load_active_set()
        self.assertEqual(ctx.exception.document, ACTIVE_STATE_DOC)

    # ── History ──

    def test_history_document_format(self):
        self.gateway.save_history([self._entry("A", "1", 90_400), self._entry("B", "2", 500)])
        on_disk = json.loads((self.current / HISTORY_DOC).read_text())
        self.assertEqual([e["project"] for e in on_disk], ["A", "B"])
        self.assertEqual(on_disk[0]["durationSeconds"], 90)
        self.assertEqual(on_disk[1]["durationSeconds"], 1)
        self.assertEqual(on_disk[0]["endTime"], "2026-02-12T14:30:00.000Z")

        loaded = self.gateway.load_history()
        self.assertEqual([e.project for e in loaded], ["A", "B"])
        self.assertEqual(loaded[0].total_duration_ms, 90_400)

    def test_load_history_rejects_malformed_entries(self):
        (self.current / HISTORY_DOC).write_text(json.dumps([{"project": "A", "task": "1",
                                                             "totalDurationMs": 0,
                                                             "endTime": "2026-02-12T14:30:00Z"}]))
        with self.assertRaises(NetworkError):
            self.gateway.load_history()

        (self.current / HISTORY_DOC).write_text("{}")
        with self.assertRaises(NetworkError):
            self.gateway.load_history()

    def test_save_history_rejects_non_entries(self):
        with self.assertRaises(ValidationError):
            self.gateway.save_history([{"project": "A"}])

    # ── Payload limits ──

    def test_oversized_payload_rejected_before_write(self):
        gateway = make_gateway(self._tmppath / "small", clock=self.clock, max_payload_bytes=300)
        timers = {f"id-{i}": ActiveTimer(f"Project {i}", "Task", None, i, True) for i in range(10)}
        with patch.object(gateway.store, "write_text") as write_text:
            with self.assertRaises(ValidationError) as ctx:
                gateway.save_active_set(timers)
            write_text.assert_not_called()
        self.assertTrue(ctx.exception.oversized)

    def test_prepare_validates_without_writing(self):
        gateway = make_gateway(self._tmppath / "prep", clock=self.clock, max_payload_bytes=300)
        entries = [self._entry("Project", "x" * 100)]
        with patch.object(gateway.store, "write_text") as write_text:
            with self.assertRaises(ValidationError) as ctx:
                gateway.prepare_history(entries)
            content = gateway.prepare_active_set({"id": ActiveTimer("A", "1", None, 5, True)})
            write_text.assert_not_called()
        self.assertTrue(ctx.exception.oversized)
        self.assertEqual(json.loads(content)["id"]["accumulatedMs"], 5)

    # ── Write failures ──

    def test_write_failure_surfaces_persistence_error(self):
        with patch("mtt.core.store.os.replace", side_effect=OSError("disk gone")):
            with self.assertRaises(PersistenceError):
                self.gateway.save_active_set({"id": ActiveTimer("A", "1", None, 5, True)})
        self.assertEqual(self.gateway.load_active_set(), {})

    # ── History snapshots ──

    def test_history_replacement_snapshots_previous_version(self):
        self.gateway.save_history([self._entry("First", "1")])
        self.gateway.save_history([self._entry("First", "1"), self._entry("Second", "2")])

        snapshots = sorted((self._tmppath / "snapshots").glob("data_*.json"))
        self.assertGreaterEqual(len(snapshots), 1)
        newest = json.loads(snapshots[-1].read_text())
        self.assertEqual([e["project"] for e in newest], ["First"])

    def test_snapshots_can_be_disabled(self):
        gateway = make_gateway(self._tmppath / "nosnap", clock=self.clock, snapshot_keep_history=False)
        gateway.save_history([self._entry()])
        self.assertFalse(list((self._tmppath / "nosnap" / "snapshots").glob("data_*.json")))

    def test_snapshot_failure_does_not_fail_save(self):
        with patch("mtt.core.gateway.create_snapshot", side_effect=OSError("read-only")):
            self.gateway.save_history([self._entry()])
        self.assertEqual(len(self.gateway.load_history()), 1)

    # ── Health ──

    def test_health_ok(self):
        health = self.gateway.health()
        self.assertEqual(health["status"], "ok")
        self.assertEqual(health["timestamp"], "2026-02-12T14:30:00.000Z")
        self.assertEqual(health["documents"][ACTIVE_STATE_DOC], {"exists": True, "readable": True})
        self.assertEqual(health["documents"][HISTORY_DOC], {"exists": True, "readable": True})
        self.assertGreaterEqual(health["uptime"], 0)

    def test_health_degraded_when_document_broken_or_missing(self):
        (self.current / HISTORY_DOC).write_text("{}")  # wrong top-level shape
        (self.current / ACTIVE_STATE_DOC).unlink()
        health = self.gateway.health()
        self.assertEqual(health["status"], "degraded")
        self.assertEqual(health["documents"][HISTORY_DOC], {"exists": True, "readable": False})
        self.assertEqual(health["documents"][ACTIVE_STATE_DOC], {"exists": False, "readable": False})


if __name__ == "__main__":
    unittest.main()
