import json
import os
import tempfile
import types
import unittest
from pathlib import Path

from fastapi import HTTPException
from fastapi.responses import JSONResponse

from artifact_tree import ArtifactTree

from ocdash.dashboard import StoreRegistry
from ocdash.routers import dashboard as dashboard_router


class DashboardRouterTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        base = Path(self._tmp.name)
        self.tree = ArtifactTree(base / "storage")
        self.project = base / "project"
        self.project.mkdir()
        self.other_project = base / "other"
        self.other_project.mkdir()
        self.registry = StoreRegistry(self.tree.root)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _request(self, resolve_source=None, registry="default"):
        return types.SimpleNamespace(
            app=types.SimpleNamespace(
                state=types.SimpleNamespace(
                    registry=self.registry if registry == "default" else registry,
                    project_root=str(self.project),
                    resolve_source=resolve_source,
                )
            )
        )

    @staticmethod
    def _body(response: JSONResponse) -> dict:
        return json.loads(response.body)

    def test_health(self) -> None:
        self.assertEqual(dashboard_router.health(), {"ok": True})

    def test_dashboard_uses_default_project(self) -> None:
        self.tree.session("ses_main", str(self.project), updated=1000)

        payload = dashboard_router.get_dashboard(self._request(), sourceId=None)

        self.assertEqual(payload["mainSession"]["sessionId"], "ses_main")

    def test_dashboard_resolves_source_ids(self) -> None:
        self.tree.session("ses_other", str(self.other_project), updated=1000)
        roots = {"src-other": str(self.other_project)}

        payload = dashboard_router.get_dashboard(self._request(resolve_source=roots.get), sourceId=" src-other ")

        self.assertEqual(payload["mainSession"]["sessionId"], "ses_other")
        self.assertIsNotNone(self.registry.store_for_source("src-other"))

    def test_unknown_source_is_rejected(self) -> None:
        response = dashboard_router.get_dashboard(self._request(resolve_source={}.get), sourceId="nope")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self._body(response), {"ok": False, "sourceId": "nope"})

    def test_missing_registry_is_unavailable(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            dashboard_router.get_dashboard(self._request(registry=None), sourceId=None)
        self.assertEqual(ctx.exception.status_code, 503)

    def test_tool_calls_rejects_invalid_session_id(self) -> None:
        for bad in ("../etc", "a" * 129, "ses.1", ""):
            response = dashboard_router.get_tool_calls(bad, self._request())
            self.assertEqual(response.status_code, 400)
            self.assertEqual(self._body(response), {"ok": False, "sessionId": bad, "toolCalls": []})

    def test_tool_calls_missing_session_is_404(self) -> None:
        response = dashboard_router.get_tool_calls("ses_missing", self._request())

        self.assertEqual(response.status_code, 404)
        self.assertEqual(self._body(response)["toolCalls"], [])

    def test_tool_calls_payload(self) -> None:
        self.tree.message("ses_1", "msg_1", created=1000)
        self.tree.tool_part("ses_1", "msg_1", "p1", "bash", call_id="c1", input={"command": "rm -rf /"})

        payload = dashboard_router.get_tool_calls("ses_1", self._request())

        self.assertTrue(payload["ok"])
        self.assertEqual(payload["caps"], {"maxMessages": 200, "maxToolCalls": 300})
        self.assertFalse(payload["truncated"])
        self.assertEqual(payload["toolCalls"][0]["tool"], "bash")
        self.assertNotIn("rm -rf", json.dumps(payload))

    def test_tool_calls_path_escape_is_403(self) -> None:
        outside = Path(self._tmp.name) / "outside" / "ses_link"
        outside.mkdir(parents=True)
        os.symlink(outside, self.tree.storage.message / "ses_link")

        response = dashboard_router.get_tool_calls("ses_link", self._request())

        self.assertEqual(response.status_code, 403)
        self.assertFalse(self._body(response)["ok"])


if __name__ == "__main__":
    unittest.main()
