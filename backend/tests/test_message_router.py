import unittest

from app.realtime.broadcaster import FanoutBroadcaster, room_channel
from app.realtime.messages import confirmed_message_id, generate_message_id
from app.realtime.persistence import AsyncPersistenceSink
from app.realtime.router import MessageRouter, OutgoingChat, Route, classify
from app.services.lowcard_service import LowCardBot


class _RecordingServer:
    def __init__(self) -> None:
        self.emitted: list[tuple[str, object, str | None]] = []

    async def emit(self, event, data=None, room=None, skip_sid=None, **kwargs):
        self.emitted.append((event, data, room))

    async def enter_room(self, sid, room):
        return None

    async def leave_room(self, sid, room):
        return None

    def events(self, name: str) -> list[dict]:
        return [payload for event, payload, _ in self.emitted if event == name]


class _FakeStore:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.inserts: list[tuple] = []

    def insert(self, room_id, sender, content, message_type, meta):
        if self.fail:
            raise RuntimeError("database is gone")
        self.inserts.append((room_id, sender, content, message_type, meta))
        return len(self.inserts)


class _ExplodingBot:
    def is_active(self, room_id: str) -> bool:
        return True

    def status(self, room_id: str):
        return None

    def active_room_ids(self) -> list[str]:
        return []

    async def handle_command(self, room_id, raw_command, acting_user_id, acting_username):
        raise RuntimeError("bot crashed")


class ClassifyTests(unittest.TestCase):
    def test_install_phrase_is_case_insensitive(self) -> None:
        route = classify("  /ADD bot LowCard ", install_phrase="/add bot lowcard", sigil="!")
        self.assertIs(route, Route.BOT_INSTALL)

    def test_sigil_prefix_is_bot_command(self) -> None:
        self.assertIs(classify("!draw", install_phrase="/add bot lowcard", sigil="!"), Route.BOT_COMMAND)

    def test_sigil_must_lead_the_message(self) -> None:
        self.assertIs(classify("wow!", install_phrase="/add bot lowcard", sigil="!"), Route.CHAT)
        self.assertIs(classify(" !draw", install_phrase="/add bot lowcard", sigil="!"), Route.CHAT)


class MessageIdTests(unittest.TestCase):
    def test_temp_id_is_confirmed(self) -> None:
        self.assertEqual(confirmed_message_id("temp_abc123"), "abc123_confirmed")
        self.assertEqual(confirmed_message_id("xyz"), "xyz_confirmed")

    def test_generated_id_shape(self) -> None:
        message_id = generate_message_id("alice", now=1700000000.123)
        millis, sender, suffix = message_id.split("_")
        self.assertEqual(millis, "1700000000123")
        self.assertEqual(sender, "alice")
        self.assertEqual(len(suffix), 9)


class MessageRouterTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.server = _RecordingServer()
        self.store = _FakeStore()
        self.broadcaster = FanoutBroadcaster(self.server)
        self.sink = AsyncPersistenceSink(self.store, max_queue_size=10)

    async def asyncTearDown(self) -> None:
        await self.sink.close()

    def _router(self, game_bot=None) -> MessageRouter:
        return MessageRouter(
            self.broadcaster,
            self.sink,
            game_bot,
            install_phrase="/add bot lowcard",
            sigil="!",
            max_message_length=20,
        )

    async def test_chat_is_broadcast_then_persisted_once(self) -> None:
        router = self._router()
        result = await router.route(
            OutgoingChat(room_id="42", sender="alice", content="hello", temp_id="temp_1")
        )
        await self.sink.drain()

        self.assertTrue(result.ok)
        self.assertEqual(result.message.id, "1_confirmed")
        messages = self.server.events("new-message")
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0]["content"], "hello")
        self.assertEqual(self.server.emitted[0][2], room_channel("42"))
        self.assertEqual(len(self.store.inserts), 1)
        self.assertEqual(self.store.inserts[0][:4], ("42", "alice", "hello", "message"))

    async def test_long_message_is_rejected_unchanged(self) -> None:
        router = self._router()
        result = await router.route(OutgoingChat(room_id="1", sender="alice", content="x" * 50))
        await self.sink.drain()

        self.assertFalse(result.ok)
        self.assertEqual(result.error, "message too long")
        self.assertEqual(self.server.emitted, [])
        self.assertEqual(self.store.inserts, [])

        exact = await router.route(OutgoingChat(room_id="1", sender="alice", content="y" * 20))
        self.assertEqual(exact.message.content, "y" * 20)

    async def test_empty_message_is_rejected(self) -> None:
        router = self._router()
        result = await router.route(OutgoingChat(room_id="1", sender="alice", content="   "))
        self.assertFalse(result.ok)
        self.assertEqual(self.server.emitted, [])

    async def test_gift_emits_animation_after_message(self) -> None:
        router = self._router()
        await router.route(
            OutgoingChat(
                room_id="1",
                sender="alice",
                content="sent a rose",
                message_type="gift",
                gift={"name": "rose", "price": 10},
            )
        )
        await self.sink.drain()

        self.assertEqual([event for event, _, _ in self.server.emitted], ["new-message", "gift-animation"])
        self.assertEqual(self.server.events("gift-animation")[0]["gift"]["name"], "rose")
        self.assertEqual(self.store.inserts[0][4]["gift"], {"name": "rose", "price": 10})

    async def test_private_room_message_is_flagged(self) -> None:
        router = self._router()
        private = await router.route(OutgoingChat(room_id="private_alice_bob", sender="alice", content="hi"))
        public = await router.route(OutgoingChat(room_id="1", sender="alice", content="hi"))

        self.assertTrue(private.message.to_payload()["isPrivate"])
        self.assertNotIn("isPrivate", public.message.to_payload())

    async def test_bot_command_without_adapter_gets_single_system_reply(self) -> None:
        router = self._router(game_bot=None)
        result = await router.route(OutgoingChat(room_id="1", sender="alice", content="!draw"))
        await self.sink.drain()

        self.assertIs(result.route, Route.BOT_COMMAND)
        messages = self.server.events("new-message")
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0]["type"], "system")
        self.assertNotIn("!draw", messages[0]["content"])
        self.assertEqual(self.store.inserts, [])

    async def test_bot_command_is_never_broadcast_verbatim(self) -> None:
        bot = LowCardBot(self.broadcaster)
        router = self._router(game_bot=bot)
        await router.route(OutgoingChat(room_id="1", sender="alice", content="/add bot lowcard"))
        await router.route(OutgoingChat(room_id="1", sender="alice", content="!help"))
        await self.sink.drain()

        contents = [payload["content"] for payload in self.server.events("new-message")]
        self.assertNotIn("!help", contents)
        self.assertNotIn("/add bot lowcard", contents)
        self.assertTrue(any("LowCard Bot has been added" in content for content in contents))
        self.assertTrue(any(content.startswith("LowCard commands") for content in contents))
        self.assertEqual(self.store.inserts, [])

    async def test_failing_bot_does_not_break_routing(self) -> None:
        router = self._router(game_bot=_ExplodingBot())
        with self.assertLogs("app.realtime.router", level="ERROR"):
            result = await router.route(OutgoingChat(room_id="1", sender="alice", content="!d"))
        self.assertTrue(result.ok)
        self.assertEqual(len(self.server.events("new-message")), 1)

        follow_up = await router.route(OutgoingChat(room_id="1", sender="alice", content="still here"))
        self.assertTrue(follow_up.ok)

    async def test_failing_store_does_not_affect_delivery(self) -> None:
        self.store.fail = True
        router = self._router()
        with self.assertLogs("app.realtime.persistence", level="ERROR"):
            first = await router.route(OutgoingChat(room_id="1", sender="alice", content="one"))
            second = await router.route(OutgoingChat(room_id="1", sender="alice", content="two"))
            await self.sink.drain()

        self.assertTrue(first.ok)
        self.assertTrue(second.ok)
        self.assertEqual(
            [payload["content"] for payload in self.server.events("new-message")], ["one", "two"]
        )


class PersistenceSinkTests(unittest.IsolatedAsyncioTestCase):
    async def test_full_queue_drops_and_counts(self) -> None:
        from app.realtime.messages import build_chat_message

        store = _FakeStore()
        sink = AsyncPersistenceSink(store, max_queue_size=1)
        self.assertTrue(sink.persist(build_chat_message("1", "alice", "a")))
        with self.assertLogs("app.realtime.persistence", level="WARNING"):
            self.assertFalse(sink.persist(build_chat_message("1", "alice", "b")))
        await sink.drain()
        await sink.close()

        self.assertEqual(sink.dropped, 1)
        self.assertEqual([insert[2] for insert in store.inserts], ["a"])

    async def test_system_messages_are_not_persisted(self) -> None:
        from app.realtime.messages import system_message

        store = _FakeStore()
        sink = AsyncPersistenceSink(store)
        self.assertFalse(sink.persist(system_message("1", "hello")))
        await sink.drain()
        self.assertEqual(store.inserts, [])


if __name__ == "__main__":
    unittest.main()
