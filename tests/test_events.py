import unittest

from copilot.core.config import TranscriptFragment
from copilot.core.events import AudioLevel, EventHub, StateUpdate, TranscriptReceived, event_payload


class EventHubTests(unittest.IsolatedAsyncioTestCase):
    async def test_subscribers_receive_in_order(self) -> None:
        hub = EventHub()
        q = hub.subscribe()
        hub.publish(AudioLevel(0.1))
        hub.publish(StateUpdate({"status": "recording"}))

        self.assertEqual(await q.get(), AudioLevel(0.1))
        self.assertEqual((await q.get()).state, {"status": "recording"})

    async def test_slow_subscriber_dropped(self) -> None:
        hub = EventHub(queue_size=1)
        q = hub.subscribe()
        hub.publish(AudioLevel(0.1))
        self.assertTrue(hub.is_subscribed(q))
        hub.publish(AudioLevel(0.2))
        self.assertEqual(hub.subscriber_count, 0)
        self.assertFalse(hub.is_subscribed(q))

    async def test_failing_listener_does_not_block_others(self) -> None:
        hub = EventHub()
        seen = []

        def broken(_event):
            raise RuntimeError("listener bug")

        hub.add_listener(broken)
        hub.add_listener(seen.append)
        with self.assertLogs("copilot.core.events", level="ERROR"):
            hub.publish(AudioLevel(0.5))

        self.assertEqual(seen, [AudioLevel(0.5)])

    def test_payloads(self) -> None:
        frag = TranscriptFragment(text="hi", timestamp_ms=1, is_final=True)
        self.assertEqual(event_payload(StateUpdate({"status": "idle"})), {"status": "idle"})
        self.assertEqual(event_payload(TranscriptReceived(frag))["fragment"]["text"], "hi")
        self.assertEqual(TranscriptReceived.type, "transcription:update")


if __name__ == "__main__":
    unittest.main()
