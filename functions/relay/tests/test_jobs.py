import unittest
from datetime import datetime, timedelta, timezone

from google.cloud.firestore_v1 import SERVER_TIMESTAMP

from relay.jobs import (
    accrue_activity_points,
    award_badges,
    expire_suspensions,
    find_badge_awards,
)
from relay.push import InMemoryPushSender
from relay.store import InMemorySocialStore
from shared.types import BadgeDefinition, UserRecord

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class AccrueActivityPointsTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemorySocialStore()
        self.store.add_user("alice", activity_points=999)
        self.store.add_user("bob")
        self.store.add_post("p1", "alice", voters=["bob", "carol", "dan"])
        self.store.add_post("p2", "alice", voters=["bob"])
        self.store.add_post("p3", "bob", voters=[])

    def test_totals_votes_per_author(self):
        result = accrue_activity_points(self.store)
        self.assertEqual(result.posts_scanned, 3)
        self.assertEqual(result.totals, {"alice": 4, "bob": 0})
        self.assertEqual(self.store.users["alice"]["activityPoints"], 4)
        self.assertEqual(self.store.users["bob"]["activityPoints"], 0)

    def test_repeated_runs_do_not_double_count(self):
        accrue_activity_points(self.store)
        accrue_activity_points(self.store)
        self.assertEqual(self.store.users["alice"]["activityPoints"], 4)

    def test_all_totals_written_in_one_batch(self):
        accrue_activity_points(self.store)
        self.assertEqual(self.store.commits, 1)

    def test_failed_commit_writes_nothing(self):
        self.store.fail_commits = True
        with self.assertRaises(RuntimeError):
            accrue_activity_points(self.store)
        self.assertEqual(self.store.users["alice"]["activityPoints"], 999)

    def test_post_with_null_author_does_not_stop_the_run(self):
        self.store.posts["p4"] = {"authorId": None}
        self.store.votes["p4"] = {"carol"}

        result = accrue_activity_points(self.store)

        self.assertEqual(result.posts_scanned, 3)
        self.assertEqual(result.totals, {"alice": 4, "bob": 0})

    def test_no_posts(self):
        store = InMemorySocialStore()
        result = accrue_activity_points(store)
        self.assertEqual(result.users_updated, 0)
        self.assertEqual(store.commits, 0)


class ExpireSuspensionsTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemorySocialStore()
        self.store.add_suspension("expired", "u1", "c1", NOW - timedelta(hours=1))
        self.store.add_suspension("exactly-now", "u2", "c1", NOW)
        self.store.add_suspension("future", "u3", "c1", NOW + timedelta(hours=1))
        for user_id in ("u1", "u2", "u3"):
            self.store.add_membership("c1", user_id, status="suspended")

    def test_lifts_expired_and_due_suspensions(self):
        result = expire_suspensions(self.store, now=NOW)

        self.assertEqual(result.lifted, 2)
        self.assertEqual(set(self.store.suspensions), {"future"})
        self.assertEqual(self.store.memberships["c1_u1"]["status"], "active")
        self.assertEqual(self.store.memberships["c1_u2"]["status"], "active")
        self.assertEqual(self.store.memberships["c1_u3"]["status"], "suspended")

    def test_delete_and_status_flip_are_atomic(self):
        self.store.fail_commits = True
        with self.assertRaises(RuntimeError):
            expire_suspensions(self.store, now=NOW)

        # Neither the delete nor the flip is visible.
        self.assertIn("expired", self.store.suspensions)
        self.assertEqual(self.store.memberships["c1_u1"]["status"], "suspended")

    def test_missing_membership_still_deletes_suspension(self):
        del self.store.memberships["c1_u1"]
        result = expire_suspensions(self.store, now=NOW)
        self.assertEqual(result.lifted, 2)
        self.assertNotIn("expired", self.store.suspensions)
        self.assertNotIn("c1_u1", self.store.memberships)

    def test_nothing_due(self):
        result = expire_suspensions(self.store, now=NOW - timedelta(days=1))
        self.assertEqual(result.lifted, 0)
        self.assertEqual(self.store.commits, 0)


class FindBadgeAwardsTests(unittest.TestCase):
    def test_threshold_met_and_not_held(self):
        badges = [
            BadgeDefinition(id="gold", name="Gold", threshold=100),
            BadgeDefinition(id="bronze", name="Bronze", threshold=10),
            BadgeDefinition(id="silver", name="Silver", threshold=50),
        ]
        users = [
            UserRecord(id="a", activity_points=50, badges=["bronze"]),
            UserRecord(id="b", activity_points=9),
            UserRecord(id="c", activity_points=100),
        ]

        awards = find_badge_awards(users, badges)

        self.assertEqual(
            [(award.user_id, award.badge.id) for award in awards],
            [("a", "silver"), ("c", "bronze"), ("c", "silver"), ("c", "gold")],
        )
        notification = awards[0].notification
        self.assertEqual(notification.type, "badge_awarded")
        self.assertEqual(notification.user_id, "a")
        self.assertEqual(notification.sender_id, "system")
        self.assertFalse(notification.is_read)
        self.assertIn("Silver", notification.message)


class AwardBadgesTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemorySocialStore()
        self.push = InMemoryPushSender()
        self.store.add_badge("starter", "Starter", 5)
        self.store.add_badge("pro", "Pro", 50)
        self.store.add_user("alice", activity_points=60, fcm_tokens=["a-phone", "a-tablet"])
        self.store.add_user("bob", activity_points=6, badges=["starter"], fcm_tokens=["b-phone"])
        self.store.add_user("carol", activity_points=1, fcm_tokens=["c-phone"])

    def test_awards_badges_notifications_and_pushes(self):
        result = award_badges(self.store, self.push)

        self.assertEqual(result.awarded, 2)
        self.assertEqual(self.store.users["alice"]["badges"], ["starter", "pro"])
        self.assertEqual(self.store.users["bob"]["badges"], ["starter"])
        self.assertEqual(self.store.users["carol"]["badges"], [])

        notifications = list(self.store.notifications.values())
        self.assertEqual(len(notifications), 2)
        self.assertEqual({n["userId"] for n in notifications}, {"alice"})
        self.assertEqual(notifications[0]["type"], "badge_awarded")
        self.assertEqual(notifications[0]["senderId"], "system")
        self.assertIs(notifications[0]["createdAt"], SERVER_TIMESTAMP)
        self.assertFalse(notifications[0]["isRead"])

        # Two badges to two devices.
        self.assertEqual(result.pushes_sent, 4)
        self.assertEqual(
            sorted({token for token, _ in self.push.sent}), ["a-phone", "a-tablet"]
        )
        _, message = self.push.sent[0]
        self.assertEqual(message.data["type"], "badge_awarded")
        self.assertIn(message.data["badgeId"], {"starter", "pro"})

    def test_records_committed_in_one_batch(self):
        award_badges(self.store, self.push)
        self.assertEqual(self.store.commits, 1)

    def test_second_run_awards_nothing(self):
        award_badges(self.store, self.push)
        pushes_after_first_run = len(self.push.sent)

        result = award_badges(self.store, self.push)

        self.assertEqual(result.awarded, 0)
        self.assertEqual(self.store.users["alice"]["badges"], ["starter", "pro"])
        self.assertEqual(len(self.store.notifications), 2)
        self.assertEqual(len(self.push.sent), pushes_after_first_run)

    def test_push_failures_do_not_roll_back_awards(self):
        self.push.failing_tokens.add("a-tablet")

        result = award_badges(self.store, self.push)

        self.assertEqual(result.awarded, 2)
        self.assertEqual(result.pushes_sent, 2)
        self.assertEqual(result.pushes_failed, 2)
        self.assertEqual(self.store.users["alice"]["badges"], ["starter", "pro"])
        self.assertEqual(len(self.store.notifications), 2)

    def test_users_with_null_fields_are_still_processed(self):
        self.store.users["dave"] = {"activityPoints": 10, "badges": None, "fcmTokens": None}
        self.store.users["erin"] = {"activityPoints": None, "badges": None}

        result = award_badges(self.store, self.push)

        self.assertEqual(result.awarded, 3)
        self.assertEqual(self.store.users["dave"]["badges"], ["starter"])
        self.assertIsNone(self.store.users["erin"]["badges"])
        self.assertEqual(self.store.users["alice"]["badges"], ["starter", "pro"])

    def test_failed_commit_sends_no_push(self):
        self.store.fail_commits = True
        with self.assertRaises(RuntimeError):
            award_badges(self.store, self.push)
        self.assertEqual(self.push.sent, [])
        self.assertEqual(self.store.notifications, {})


if __name__ == "__main__":
    unittest.main()
