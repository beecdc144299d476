import unittest

from fastapi.testclient import TestClient

from fakes import SINK, ScriptedTransport, StaticAcquisition, make_items
from looprelay.api.app import app
from looprelay.api.state import AppState, get_state
from looprelay.core.acquisition import AcquisitionChain
from looprelay.core.relay_loop import RelayLoop
from looprelay.core.transport import TransportChain
from looprelay.exceptions import AlreadyStopped


class ControlApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.transport = ScriptedTransport(instant=0)
        self.relay = RelayLoop(
            playlist=make_items(3),
            sink=SINK,
            acquisition=AcquisitionChain([StaticAcquisition()]),
            transport=TransportChain([self.transport]),
            item_pause_sec=0.0,
        )
        state = AppState(relay=self.relay)
        app.dependency_overrides[get_state] = lambda: state
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        try:
            self.relay.stop()
        except AlreadyStopped:
            pass
        self.relay.join(timeout=5.0)

    def test_root_reports_sink_and_playlist_size(self) -> None:
        body = self.client.get("/").json()

        self.assertFalse(body["running"])
        self.assertEqual(body["current_index"], 0)
        self.assertEqual(body["videos"], 3)
        self.assertEqual(body["sink"]["host"], "sink.example")
        self.assertEqual(body["endpoint"], SINK.url)

    def test_start_is_idempotent(self) -> None:
        first = self.client.post("/start").json()
        second = self.client.post("/start").json()

        self.assertTrue(first["changed"])
        self.assertFalse(second["changed"])
        self.assertEqual(second["message"], "already running")
        self.assertTrue(self.transport.blocked.wait(5.0))
        self.assertEqual(self.transport.started, 1)

    def test_stop_is_idempotent(self) -> None:
        self.client.post("/start")
        self.assertTrue(self.transport.blocked.wait(5.0))

        first = self.client.post("/stop").json()
        second = self.client.post("/stop").json()

        self.assertTrue(first["changed"])
        self.assertEqual(second["message"], "already stopped")
        self.assertTrue(self.relay.join(timeout=5.0))
        self.assertFalse(self.client.get("/status").json()["running"])

    def test_skip_while_stopped_advances_without_starting(self) -> None:
        body = self.client.post("/skip").json()

        self.assertEqual(body["current_index"], 1)
        self.assertFalse(body["running"])

    def test_skip_to_index(self) -> None:
        ok = self.client.post("/skip", json={"index": 2})
        bad = self.client.post("/skip", json={"index": 7})

        self.assertEqual(ok.json()["current_index"], 2)
        self.assertEqual(bad.status_code, 400)

    def test_playlist_marks_active_item(self) -> None:
        self.client.post("/skip")
        items = self.client.get("/playlist").json()

        self.assertEqual(len(items), 3)
        self.assertEqual([i["active"] for i in items], [False, True, False])
        self.assertEqual(items[0]["video_id"], "vid0")

    def test_status_and_health_report_counters(self) -> None:
        for path in ("/status", "/health"):
            body = self.client.get(path).json()
            self.assertEqual(body["items_completed"], 0)
            self.assertEqual(body["errors"], 0)
            self.assertFalse(body["running"])
            self.assertIn("uptime_sec", body)
            self.assertEqual(body["transport_strategies"], ["scripted"])


if __name__ == "__main__":
    unittest.main()
