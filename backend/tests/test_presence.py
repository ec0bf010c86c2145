import unittest

from app.realtime.presence import PresenceTable, SessionManager


class PresenceTableTests(unittest.TestCase):
    def test_rejoin_keeps_participant_id_and_count(self) -> None:
        table = PresenceTable("42")
        first = table.join("alice", "user")
        table.leave("alice")
        again = table.join("alice", "admin")

        self.assertEqual(first.id, again.id)
        self.assertEqual(len(table), 1)
        self.assertTrue(again.is_online)
        self.assertEqual(again.role, "user")

    def test_rejoin_with_refresh_role_updates_role(self) -> None:
        table = PresenceTable("42")
        table.join("alice", "user")
        participant = table.join("alice", "mentor", refresh_role=True)
        self.assertEqual(participant.role, "mentor")

    def test_leave_marks_offline_without_removing(self) -> None:
        table = PresenceTable("42")
        table.join("alice", "user")
        left = table.leave("alice")

        self.assertIsNotNone(left)
        self.assertFalse(left.is_online)
        self.assertIn("alice", table)
        self.assertEqual(len(table), 1)

    def test_leave_unknown_user_is_noop(self) -> None:
        table = PresenceTable("42")
        self.assertIsNone(table.leave("ghost"))
        self.assertEqual(len(table), 0)

    def test_kick_removes_record(self) -> None:
        table = PresenceTable("42")
        table.join("alice", "user")
        table.join("bob", "user")
        kicked = table.kick("bob")

        self.assertEqual(kicked.username, "bob")
        self.assertNotIn("bob", table)
        self.assertEqual([p.username for p in table.snapshot()], ["alice"])

    def test_snapshot_preserves_join_order(self) -> None:
        table = PresenceTable("42")
        for name in ("carol", "alice", "bob"):
            table.join(name, "user")
        table.join("carol", "user")
        self.assertEqual([p.username for p in table.snapshot()], ["carol", "alice", "bob"])


class SessionManagerTests(unittest.TestCase):
    def test_member_count_follows_table_size(self) -> None:
        sessions = SessionManager()
        self.assertEqual(sessions.member_count("7"), 0)

        sessions.join("7", "alice", "user")
        sessions.join("7", "bob", "user")
        sessions.join("7", "alice", "user")
        self.assertEqual(sessions.member_count("7"), len(sessions.snapshot("7")))
        self.assertEqual(sessions.member_count("7"), 2)

        sessions.leave("7", "bob")
        self.assertEqual(sessions.member_count("7"), 2)

        sessions.kick("7", "bob")
        self.assertEqual(sessions.member_count("7"), 1)

    def test_rooms_are_independent(self) -> None:
        sessions = SessionManager()
        sessions.join("1", "alice", "user")
        sessions.join("2", "bob", "user")

        self.assertTrue(sessions.is_present("1", "alice"))
        self.assertFalse(sessions.is_present("2", "alice"))
        self.assertEqual(sorted(sessions.room_ids()), ["1", "2"])

    def test_reads_on_unknown_room_do_not_create_tables(self) -> None:
        sessions = SessionManager()
        sessions.join("1", "alice", "user")

        self.assertEqual(sessions.snapshot("ghost"), [])
        self.assertEqual(sessions.snapshot_payload("ghost"), [])
        self.assertIsNone(sessions.leave("ghost", "alice"))
        self.assertIsNone(sessions.kick("ghost", "alice"))
        self.assertIsNone(sessions.table("ghost"))
        self.assertEqual(sessions.member_count("ghost"), 0)
        self.assertEqual(sessions.room_ids(), ["1"])

    def test_drop_room_discards_presence(self) -> None:
        sessions = SessionManager()
        sessions.join("3", "alice", "user")

        self.assertTrue(sessions.drop_room("3"))
        self.assertFalse(sessions.drop_room("3"))
        self.assertEqual(sessions.member_count("3"), 0)

    def test_snapshot_payload_uses_client_keys(self) -> None:
        sessions = SessionManager()
        sessions.join("1", "alice", "merchant")
        payload = sessions.snapshot_payload("1")[0]

        self.assertEqual(payload["username"], "alice")
        self.assertEqual(payload["role"], "merchant")
        self.assertTrue(payload["isOnline"])
        self.assertIn("joinedAt", payload)
        self.assertIn("lastSeen", payload)


if __name__ == "__main__":
    unittest.main()
