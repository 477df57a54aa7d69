import json
import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from copilot.core.config import CopilotConfig
from copilot.core.database import MeetingStore
from copilot.core.events import AudioLevel, EventHub
from copilot.dashboard_server import _event_stream, create_dashboard_app
from copilot.main import MeetingCopilot
from fakes import FakeAudio, FakeLLM, FakeTranscriber


class DashboardApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.audio = FakeAudio()
        cfg = CopilotConfig(analysis_interval_s=3600, stt_backend="stdin", data_dir=self._tmp.name)
        self.copilot = MeetingCopilot(
            cfg,
            audio=self.audio,
            transcriber=FakeTranscriber(),
            llm=FakeLLM({}),
            store=MeetingStore(Path(self._tmp.name) / "meetings.db"),
        )
        self.client = TestClient(create_dashboard_app(cfg, self.copilot))
        self.client.__enter__()

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)
        self._tmp.cleanup()

    def test_health_and_state(self) -> None:
        health = self.client.get("/api/health").json()
        self.assertTrue(health["ok"])
        self.assertEqual(health["health"]["status"], "idle")
        self.assertEqual(self.client.get("/api/state").json()["status"], "idle")

    def test_lifecycle_commands(self) -> None:
        self.assertEqual(self.client.post("/api/meeting/start").json()["state"]["status"], "recording")
        self.assertEqual(self.client.post("/api/meeting/pause").json()["state"]["status"], "paused")
        self.assertEqual(self.client.post("/api/meeting/resume").json()["state"]["status"], "recording")
        self.assertEqual(self.client.post("/api/meeting/reset").json()["state"]["status"], "idle")

    def test_invalid_transition_is_409(self) -> None:
        resp = self.client.post("/api/meeting/pause")
        self.assertEqual(resp.status_code, 409)
        self.assertIn("not allowed", resp.json()["detail"]["message"])

    def test_permission_denied_is_403(self) -> None:
        self.audio.permission = "denied"
        resp = self.client.post("/api/meeting/start")
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(self.client.get("/api/state").json()["status"], "idle")

    def test_saved_meeting_endpoints(self) -> None:
        self.client.post("/api/meeting/start")
        saved = self.client.post("/api/meeting/save", json={"title": "Weekly sync"}).json()["meeting"]
        self.assertEqual(saved["title"], "Weekly sync")
        self.assertEqual(self.client.get("/api/state").json()["status"], "idle")

        listed = self.client.get("/api/meetings").json()["meetings"]
        self.assertEqual([m["id"] for m in listed], [saved["id"]])

        hits = self.client.get("/api/meetings/search", params={"q": "weekly"}).json()["results"]
        self.assertEqual(hits[0]["match_type"], "title")

        self.assertEqual(self.client.patch(f"/api/meetings/{saved['id']}", json={"title": "Renamed"}).status_code, 200)
        self.assertEqual(self.client.get(f"/api/meetings/{saved['id']}").json()["title"], "Renamed")
        self.assertEqual(self.client.patch(f"/api/meetings/{saved['id']}", json={"title": " "}).status_code, 422)

        self.assertEqual(self.client.delete(f"/api/meetings/{saved['id']}").status_code, 200)
        self.assertEqual(self.client.get(f"/api/meetings/{saved['id']}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/meetings/{saved['id']}").status_code, 404)

    def test_home_page_is_served(self) -> None:
        resp = self.client.get("/")
        self.assertEqual(resp.status_code, 200)
        self.assertIn("/api/stream", resp.text)
        self.assertIn("meeting:stateUpdate", resp.text)

    def test_non_local_host_rejected(self) -> None:
        with self.assertRaises(ValueError):
            create_dashboard_app(CopilotConfig(dashboard_host="0.0.0.0"), self.copilot)


class EventStreamTests(unittest.IsolatedAsyncioTestCase):
    async def test_snapshot_then_events(self) -> None:
        hub = EventHub()
        stream = _event_stream(hub, lambda: {"status": "idle"}, heartbeat_s=0.01)

        first = await stream.__anext__()
        self.assertEqual(first["event"], "meeting:stateUpdate")
        self.assertEqual(json.loads(first["data"]), {"status": "idle"})

        self.assertEqual((await stream.__anext__())["event"], "heartbeat")
        hub.publish(AudioLevel(0.3))
        item = await stream.__anext__()
        self.assertEqual(item["event"], "audio:level")
        self.assertEqual(json.loads(item["data"]), {"level": 0.3})
        await stream.aclose()
        self.assertEqual(hub.subscriber_count, 0)

    async def test_stream_ends_after_being_dropped(self) -> None:
        hub = EventHub(queue_size=1)
        stream = _event_stream(hub, lambda: {"status": "recording"}, heartbeat_s=0.01)
        await stream.__anext__()

        hub.publish(AudioLevel(0.1))
        hub.publish(AudioLevel(0.2))
        self.assertEqual(hub.subscriber_count, 0)

        rest = [item async for item in stream]
        self.assertEqual([item["event"] for item in rest], ["audio:level"])
        self.assertEqual(json.loads(rest[0]["data"]), {"level": 0.1})


if __name__ == "__main__":
    unittest.main()
