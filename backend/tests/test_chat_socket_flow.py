import unittest
from unittest.mock import patch

from app.realtime import socket_server as ws
from app.realtime.broadcaster import room_channel
from app.realtime.connections import ConnectionIdentity, anonymous_identity


class _FakeStore:
    def __init__(self) -> None:
        self.inserts: list[tuple] = []

    def insert(self, room_id, sender, content, message_type, meta):
        self.inserts.append((room_id, sender, content, message_type, meta))
        return len(self.inserts)


class ChatSocketFlowTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        ws.runtime.reset()
        self.channels: dict[str, set[str]] = {}
        self.received: dict[str, list[tuple[str, object]]] = {}
        self.store = _FakeStore()
        self.patches = []

        async def fake_emit(event, data=None, room=None, skip_sid=None, **kwargs):
            if room in self.channels:
                recipients = [sid for sid in self.channels[room] if sid != skip_sid]
            else:
                recipients = [room]
            for sid in recipients:
                self.received.setdefault(sid, []).append((event, data))

        async def fake_enter_room(sid, room):
            self.channels.setdefault(room, set()).add(sid)

        async def fake_leave_room(sid, room):
            self.channels.get(room, set()).discard(sid)

        self.patches.append(patch.object(ws.sio, "emit", new=fake_emit))
        self.patches.append(patch.object(ws.sio, "enter_room", new=fake_enter_room))
        self.patches.append(patch.object(ws.sio, "leave_room", new=fake_leave_room))
        self.patches.append(patch.object(ws.runtime.sink, "_store", new=self.store))
        self.patches.append(patch.object(ws, "_is_socket_event_allowed", return_value=True))
        for patcher in self.patches:
            patcher.start()

    async def asyncTearDown(self) -> None:
        await ws.runtime.sink.close()
        for patcher in reversed(self.patches):
            patcher.stop()
        ws.runtime.reset()

    def _connect(self, sid: str, user_id: int | None, username: str | None, role: str = "user") -> None:
        identity = (
            ConnectionIdentity(user_id, username, role)
            if user_id is not None
            else anonymous_identity()
        )
        ws.runtime.registry.bind(sid, identity)

    async def _join(self, sid: str, room_id, username: str) -> dict:
        return await ws.join_room(sid, {"roomId": room_id, "username": username})

    def _events(self, sid: str, name: str) -> list:
        return [payload for event, payload in self.received.get(sid, []) if event == name]

    async def test_message_reaches_every_member_and_is_stored_once(self) -> None:
        self._connect("sid-a", 1, "alice")
        self._connect("sid-b", 2, "bob")
        await self._join("sid-a", 42, "alice")
        await self._join("sid-b", "42", "bob")

        ack = await ws.send_message(
            "sid-a", {"roomId": "42", "content": "hello", "tempId": "temp_k1"}
        )
        await ws.runtime.sink.drain()

        self.assertTrue(ack["ok"])
        self.assertEqual(ack["message"]["id"], "k1_confirmed")
        for sid in ("sid-a", "sid-b"):
            messages = self._events(sid, "new-message")
            self.assertEqual(len(messages), 1)
            self.assertEqual(messages[0]["content"], "hello")
            self.assertEqual(messages[0]["sender"], "alice")
        self.assertEqual(len(self.store.inserts), 1)
        self.assertEqual(self.store.inserts[0][0], "42")

    async def test_sender_identity_comes_from_connection(self) -> None:
        self._connect("sid-a", 1, "alice", role="merchant")
        await self._join("sid-a", "1", "alice")

        ack = await ws.send_message(
            "sid-a", {"roomId": "1", "content": "hi", "sender": "admin", "role": "admin"}
        )
        self.assertEqual(ack["message"]["sender"], "alice")
        self.assertEqual(ack["message"]["role"], "merchant")

    async def test_legacy_event_name_is_accepted(self) -> None:
        self._connect("sid-a", 1, "alice")
        await self._join("sid-a", "1", "alice")
        ack = await ws.send_message_legacy("sid-a", {"roomId": "1", "content": "hi"})
        self.assertTrue(ack["ok"])

    async def test_join_announces_to_others_and_updates_participants(self) -> None:
        self._connect("sid-a", 1, "alice")
        self._connect("sid-b", 2, "bob")
        await self._join("sid-a", "1", "alice")
        ack = await self._join("sid-b", "1", "bob")

        self.assertTrue(ack["ok"])
        self.assertEqual(ack["participant"]["username"], "bob")
        self.assertEqual(len(self._events("sid-a", "user-joined")), 1)
        self.assertEqual(self._events("sid-b", "user-joined"), [])
        latest = self._events("sid-a", "participants-updated")[-1]
        self.assertEqual([p["username"] for p in latest], ["alice", "bob"])
        self.assertEqual(ws.runtime.sessions.member_count("1"), 2)

    async def test_anonymous_connection_listens_but_cannot_send(self) -> None:
        self._connect("sid-anon", None, None)
        self._connect("sid-a", 1, "alice")
        join_ack = await self._join("sid-anon", "1", "lurker")
        await self._join("sid-a", "1", "alice")

        self.assertIsNone(join_ack["participant"])
        self.assertEqual(ws.runtime.sessions.member_count("1"), 1)

        ack = await ws.send_message("sid-anon", {"roomId": "1", "content": "hi", "sender": "lurker"})
        self.assertEqual(ack, {"ok": False, "error": "unauthorized"})

        await ws.send_message("sid-a", {"roomId": "1", "content": "hello"})
        self.assertEqual(len(self._events("sid-anon", "new-message")), 1)

    async def test_send_requires_joining_first(self) -> None:
        self._connect("sid-a", 1, "alice")
        ack = await ws.send_message("sid-a", {"roomId": "9", "content": "hi"})
        self.assertEqual(ack["error"], "join the room first")

    async def test_bot_command_without_bot_gets_system_reply_only(self) -> None:
        self._connect("sid-a", 1, "alice")
        self._connect("sid-b", 2, "bob")
        await self._join("sid-a", "5", "alice")
        await self._join("sid-b", "5", "bob")

        with patch.object(ws.runtime.router, "game_bot", new=None):
            ack = await ws.send_message("sid-a", {"roomId": "5", "content": "!draw"})
        await ws.runtime.sink.drain()

        self.assertEqual(ack["route"], "bot_command")
        messages = self._events("sid-b", "new-message")
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0]["type"], "system")
        self.assertEqual(self.store.inserts, [])

    async def test_kick_removes_target_and_notifies_room(self) -> None:
        self._connect("sid-mod", 1, "mod", role="mentor")
        self._connect("sid-b", 2, "bob")
        self._connect("sid-c", 3, "carol")
        for sid, name in (("sid-mod", "mod"), ("sid-b", "bob"), ("sid-c", "carol")):
            await self._join(sid, "7", name)
        before = ws.runtime.sessions.member_count("7")

        ack = await ws.kick_user(
            "sid-mod", {"roomId": "7", "kickedUser": "bob", "kickedBy": "mod"}
        )

        self.assertEqual(ack, {"ok": True, "kicked": True})
        self.assertEqual(ws.runtime.sessions.member_count("7"), before - 1)
        snapshot = [p.username for p in ws.runtime.sessions.snapshot("7")]
        self.assertNotIn("bob", snapshot)
        for sid in ("sid-mod", "sid-b", "sid-c"):
            kicked = self._events(sid, "user-kicked")
            self.assertEqual(len(kicked), 1)
            self.assertEqual(kicked[0]["kickedUser"], "bob")
            self.assertEqual(kicked[0]["kickedBy"], "mod")
        self.assertNotIn("sid-b", self.channels[room_channel("7")])

        retry = await ws.send_message("sid-b", {"roomId": "7", "content": "let me back"})
        self.assertFalse(retry["ok"])

    async def test_kick_absent_user_is_noop(self) -> None:
        self._connect("sid-mod", 1, "mod", role="admin")
        await self._join("sid-mod", "7", "mod")
        ack = await ws.kick_user("sid-mod", {"roomId": "7", "kickedUser": "ghost", "kickedBy": "mod"})

        self.assertEqual(ack, {"ok": True, "kicked": False})
        self.assertEqual(self._events("sid-mod", "user-kicked"), [])

    async def test_regular_user_cannot_moderate(self) -> None:
        self._connect("sid-a", 1, "alice")
        self._connect("sid-b", 2, "bob")
        await self._join("sid-a", "7", "alice")
        await self._join("sid-b", "7", "bob")

        ack = await ws.kick_user("sid-a", {"roomId": "7", "kickedUser": "bob", "kickedBy": "alice"})
        self.assertFalse(ack["ok"])
        self.assertTrue(ws.runtime.sessions.is_present("7", "bob"))

    async def test_room_manager_can_moderate_their_room(self) -> None:
        self._connect("sid-m", 1, "tech_admin")
        self._connect("sid-b", 2, "bob")
        await self._join("sid-m", "2", "tech_admin")
        await self._join("sid-b", "2", "bob")

        ack = await ws.kick_user("sid-m", {"roomId": "2", "kickedUser": "bob", "kickedBy": "tech_admin"})
        self.assertTrue(ack["kicked"])
        self.assertEqual(self._events("sid-b", "user-kicked")[0]["roomName"], "Tech Talk")

    async def test_mute_is_announced(self) -> None:
        self._connect("sid-mod", 1, "mod", role="mentor")
        self._connect("sid-b", 2, "bob")
        await self._join("sid-mod", "7", "mod")
        await self._join("sid-b", "7", "bob")

        ack = await ws.mute_user(
            "sid-mod", {"roomId": "7", "mutedUser": "bob", "mutedBy": "mod", "action": "mute"}
        )

        self.assertEqual(ack, {"ok": True, "action": "mute"})
        muted = self._events("sid-b", "user-muted")
        self.assertEqual(muted[0]["mutedUser"], "bob")
        system = [m for m in self._events("sid-b", "new-message") if m["type"] == "mute"]
        self.assertEqual(system[0]["content"], "bob was muted by mod")

    async def test_leave_marks_offline_and_keeps_count(self) -> None:
        self._connect("sid-a", 1, "alice")
        self._connect("sid-b", 2, "bob")
        await self._join("sid-a", "1", "alice")
        await self._join("sid-b", "1", "bob")

        ack = await ws.leave_room("sid-b", {"roomId": "1", "username": "bob"})

        self.assertTrue(ack["ok"])
        self.assertEqual(ws.runtime.sessions.member_count("1"), 2)
        self.assertFalse(ws.runtime.sessions.table("1").get("bob").is_online)
        self.assertEqual(len(self._events("sid-a", "user-left")), 1)

    async def test_disconnect_flips_presence_offline(self) -> None:
        self._connect("sid-a", 1, "alice")
        self._connect("sid-b", 2, "bob")
        await self._join("sid-a", "1", "alice")
        await self._join("sid-b", "1", "bob")

        await ws.disconnect("sid-b")

        self.assertIsNone(ws.runtime.registry.get("sid-b"))
        latest = self._events("sid-a", "participants-updated")[-1]
        bob = next(p for p in latest if p["username"] == "bob")
        self.assertFalse(bob["isOnline"])

    async def test_disconnect_keeps_user_online_with_another_tab(self) -> None:
        self._connect("sid-a1", 1, "alice")
        self._connect("sid-a2", 1, "alice")
        await self._join("sid-a1", "1", "alice")
        await self._join("sid-a2", "1", "alice")

        await ws.disconnect("sid-a1")

        self.assertTrue(ws.runtime.sessions.table("1").get("alice").is_online)

    async def test_closed_room_detaches_members(self) -> None:
        self._connect("sid-a", 1, "alice")
        self._connect("sid-b", 2, "bob")
        await self._join("sid-a", "99", "alice")
        await self._join("sid-b", "99", "bob")

        await ws.runtime.close_room("99")

        self.assertNotIn("99", ws.runtime.sessions.room_ids())
        self.assertEqual(self.channels[room_channel("99")], set())
        self.assertEqual(ws.runtime.registry.get("sid-a").rooms, {})

        ack = await ws.send_message("sid-a", {"roomId": "99", "content": "anyone?"})
        await ws.runtime.sink.drain()
        self.assertEqual(ack, {"ok": False, "error": "join the room first"})
        self.assertEqual(self._events("sid-b", "new-message"), [])
        self.assertEqual(self.store.inserts, [])

        await ws.disconnect("sid-a")
        await ws.disconnect("sid-b")
        self.assertNotIn("99", ws.runtime.sessions.room_ids())

    async def test_invalid_payload_is_rejected(self) -> None:
        self._connect("sid-a", 1, "alice")
        ack = await ws.join_room("sid-a", {"username": "alice"})
        self.assertEqual(ack, {"ok": False, "error": "invalid payload"})

        ack = await ws.send_message("sid-a", "not a dict")
        self.assertFalse(ack["ok"])

    async def test_rate_limited_event_is_refused(self) -> None:
        self._connect("sid-a", 1, "alice")
        with patch.object(ws, "_is_socket_event_allowed", return_value=False):
            ack = await ws.join_room("sid-a", {"roomId": "1", "username": "alice"})

        self.assertEqual(ack["error"], "rate limit exceeded")
        self.assertEqual(len(self._events("sid-a", "rate-limited")), 1)
        self.assertEqual(ws.runtime.sessions.member_count("1"), 0)


if __name__ == "__main__":
    unittest.main()
