import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from artifact_tree import ArtifactTree

from ocdash import dashboard
from ocdash.dashboard import DashboardStore, StoreRegistry, build_snapshot
from ocdash.redaction import find_sensitive_keys

NOW = 100_000


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _populate(tree: ArtifactTree, project: Path) -> None:
    tree.session("ses_main", str(project), title="Main work", created=1000, updated=3000)
    tree.message("ses_main", "msg_1", created=1000, completed=2000, agent="sisyphus", provider="anthropic", model="claude",
                 tokens={"input": 10, "output": 5})
    tree.tool_part(
        "ses_main",
        "msg_1",
        "part_1",
        "delegate_task",
        input={"run_in_background": True, "description": "Scan repo", "subagent_type": "explore", "prompt": "SECRET"},
        extra_state={"output": "HIDDEN"},
    )
    tree.tool_part("ses_main", "msg_1", "part_2", "read")
    tree.session("ses_child", str(project), title="Background: Scan repo", parent_id="ses_main", created=1500)
    tree.message("ses_child", "msg_c", created=2500, completed=2600, provider="openai", model="gpt",
                 tokens={"input": 1, "output": 1})
    tree.tool_part("ses_child", "msg_c", "part_c", "grep", extra_state={"error": "boom"})


class BuildSnapshotTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        base = Path(self._tmp.name)
        self.tree = ArtifactTree(base / "storage")
        self.project = base / "project"
        self.project.mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_full_payload(self) -> None:
        _populate(self.tree, self.project)

        payload = build_snapshot(self.project, self.tree.storage, NOW)

        main = payload["mainSession"]
        self.assertEqual(main["sessionId"], "ses_main")
        self.assertEqual(main["session"], "Main work")
        self.assertEqual(main["agent"], "sisyphus")
        self.assertEqual(main["currentModel"], "anthropic/claude")
        self.assertEqual(main["currentTool"], "read")
        self.assertEqual(main["statusPill"], "idle")
        self.assertEqual(main["lastUpdatedLabel"], "1970-01-01T00:00:02.000Z")

        self.assertEqual(len(payload["backgroundTasks"]), 1)
        task = payload["backgroundTasks"][0]
        self.assertEqual(task["sessionId"], "ses_child")
        self.assertEqual(task["lastTool"], "grep")
        self.assertEqual(task["lastModel"], "openai/gpt")
        self.assertEqual(task["status"], "completed")

        main_task = payload["mainSessionTasks"][0]
        self.assertEqual(main_task["id"], "main-session")
        self.assertEqual(main_task["subline"], "ses_main")
        self.assertEqual(main_task["toolCalls"], 2)
        self.assertEqual(main_task["status"], "idle")
        self.assertEqual(main_task["timeline"], "1970-01-01T00:00:01Z: 1s")

        self.assertEqual(payload["planProgress"]["name"], "(no active plan)")
        self.assertEqual(payload["tokenUsage"]["totals"]["input"], 11)
        self.assertEqual([r["model"] for r in payload["tokenUsage"]["rows"]], ["anthropic/claude", "openai/gpt"])
        self.assertEqual(len(payload["timeSeries"]["series"][0]["values"]), 150)

        self.assertEqual(
            set(payload["raw"]),
            {"mainSession", "planProgress", "backgroundTasks", "mainSessionTasks", "timeSeries"},
        )
        redacted_view = {key: value for key, value in payload.items() if key != "tokenUsage"}
        self.assertEqual(find_sensitive_keys(redacted_view), [])
        self.assertNotIn("SECRET", repr(payload))
        self.assertNotIn("HIDDEN", repr(payload))

    def test_snapshot_is_deterministic(self) -> None:
        _populate(self.tree, self.project)
        first = build_snapshot(self.project, self.tree.storage, NOW)
        second = build_snapshot(self.project, self.tree.storage, NOW)
        self.assertEqual(first, second)

    def test_empty_storage_yields_placeholder_payload(self) -> None:
        payload = build_snapshot(self.project, self.tree.storage, NOW)

        self.assertIsNone(payload["mainSession"]["sessionId"])
        self.assertEqual(payload["mainSession"]["session"], "(no session)")
        self.assertEqual(payload["mainSession"]["statusPill"], "unknown")
        self.assertEqual(payload["mainSession"]["lastUpdatedLabel"], "never")
        self.assertEqual(payload["backgroundTasks"], [])
        self.assertEqual(payload["mainSessionTasks"], [])
        self.assertEqual(payload["tokenUsage"]["rows"], [])

    def test_plan_progress_is_merged_and_redacted(self) -> None:
        payload = build_snapshot(
            self.project,
            self.tree.storage,
            NOW,
            plan_progress={"name": "Plan A", "total": 3, "steps": [{"title": "s1", "prompt": "x"}]},
        )
        self.assertEqual(payload["planProgress"]["name"], "Plan A")
        self.assertEqual(payload["planProgress"]["total"], 3)
        self.assertEqual(payload["planProgress"]["steps"], [{"title": "s1"}])

    def test_token_usage_is_the_only_section_with_counter_keys(self) -> None:
        _populate(self.tree, self.project)

        payload = build_snapshot(self.project, self.tree.storage, NOW)

        leaked = find_sensitive_keys(payload)
        self.assertTrue(leaked)
        self.assertTrue(all(path.startswith("tokenUsage.") for path in leaked))
        self.assertIn("tokenUsage.totals.input", leaked)
        self.assertIn("tokenUsage.totals.output", leaked)
        self.assertIn("tokenUsage.rows[0].input", leaked)
        for row in payload["tokenUsage"]["rows"]:
            self.assertIsInstance(row["input"], (int, float))
            self.assertIsInstance(row["output"], (int, float))

    def test_output_check_strips_keys_that_bypass_redaction(self) -> None:
        with patch.object(dashboard, "redact", side_effect=lambda value: value):
            with self.assertLogs("ocdash.redaction", level="ERROR") as logs:
                payload = build_snapshot(
                    self.project,
                    self.tree.storage,
                    NOW,
                    plan_progress={"steps": [{"title": "s1", "prompt": "SECRET"}]},
                )

        self.assertIn("planProgress.steps[0].prompt", logs.output[0])
        self.assertEqual(payload["planProgress"]["steps"], [{"title": "s1"}])
        self.assertEqual(payload["raw"]["planProgress"]["steps"], [{"title": "s1"}])
        self.assertNotIn("SECRET", repr(payload))

    def test_far_future_session_time_does_not_break_the_snapshot(self) -> None:
        self.tree.session("ses_future", str(self.project), title="Future", created=1e15, updated=1e15)
        self.tree.message("ses_future", "msg_f", created=1e15, agent="sisyphus")
        self.tree.tool_part(
            "ses_future",
            "msg_f",
            "part_f",
            "delegate_task",
            input={"run_in_background": True, "description": "Far", "subagent_type": "explore"},
        )

        payload = build_snapshot(self.project, self.tree.storage, NOW)

        self.assertEqual(payload["mainSession"]["sessionId"], "ses_future")
        self.assertEqual(payload["mainSession"]["lastUpdatedLabel"], "never")
        self.assertEqual(payload["mainSessionTasks"][0]["timeline"], "")
        self.assertEqual(payload["backgroundTasks"][0]["timeline"], "")


class DashboardStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        base = Path(self._tmp.name)
        self.tree = ArtifactTree(base / "storage")
        self.project = base / "project"
        self.project.mkdir()
        self.clock = _Clock(NOW)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _store(self, **kwargs) -> DashboardStore:
        return DashboardStore(self.project, self.tree.root, poll_interval_ms=2000, clock=self.clock, **kwargs)

    def test_recomputes_only_when_dirty_or_stale(self) -> None:
        store = self._store()
        with patch.object(dashboard, "build_snapshot", wraps=dashboard.build_snapshot) as build:
            first = store.get_snapshot()
            self.assertIs(store.get_snapshot(), first)
            self.assertEqual(build.call_count, 1)
            self.assertFalse(store.dirty)

            store.mark_dirty()
            second = store.get_snapshot()
            self.assertEqual(build.call_count, 2)
            self.assertIsNot(second, first)

            self.clock.now += 2000
            store.get_snapshot()
            self.assertEqual(build.call_count, 2)

            self.clock.now += 1
            store.get_snapshot()
            self.assertEqual(build.call_count, 3)
            self.assertEqual(store.last_computed_at, NOW + 2001)

    def test_failed_build_keeps_previous_snapshot_and_stays_dirty(self) -> None:
        store = self._store()
        first = store.get_snapshot()
        store.mark_dirty()
        with patch.object(dashboard, "build_snapshot", side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                store.get_snapshot()
        self.assertTrue(store.dirty)
        self.assertIs(store._snapshot, first)

    def test_plan_reader_feeds_candidates_and_progress(self) -> None:
        self.tree.session("ses_project", str(self.project), updated=9000)
        self.tree.session("ses_plan", "/elsewhere", updated=1000)
        calls = []

        def plan_reader(project_root):
            calls.append(project_root)
            return ["ses_plan"], {"name": "Plan B", "statusPill": "in progress"}

        snapshot = self._store(plan_reader=plan_reader).get_snapshot()

        self.assertEqual(snapshot["mainSession"]["sessionId"], "ses_plan")
        self.assertEqual(snapshot["planProgress"]["name"], "Plan B")
        self.assertEqual(len(calls), 1)

    def test_watch_paths_lists_existing_roots(self) -> None:
        store = self._store()
        self.assertEqual(
            store.watch_paths(),
            [self.tree.storage.session, self.tree.storage.message, self.tree.storage.part],
        )


class StoreRegistryTests(unittest.TestCase):
    def test_sources_sharing_a_root_share_a_store(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            project = Path(tmp) / "project"
            project.mkdir()
            registry = StoreRegistry(Path(tmp) / "storage")

            a = registry.get_store(project, source_id="src-a")
            b = registry.get_store(f"{project}/", source_id="src-b")
            other = registry.get_store(tmp)

            self.assertIs(a, b)
            self.assertIsNot(a, other)
            self.assertIs(registry.store_for_source("src-b"), a)
            self.assertIsNone(registry.store_for_source("src-missing"))

            for store in registry.stores():
                store.dirty = False
            registry.mark_all_dirty()
            self.assertTrue(all(store.dirty for store in registry.stores()))


if __name__ == "__main__":
    unittest.main()
