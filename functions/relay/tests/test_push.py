import unittest
from unittest.mock import MagicMock, patch

from firebase_admin import exceptions as firebase_exceptions

from relay.errors import PushDispatchError
from relay.push import (
    FCM_MULTICAST_LIMIT,
    PAYLOAD_MODELS,
    CommentMentionPayload,
    DefaultPayload,
    FcmPushSender,
    NotificationType,
    PushMessage,
    parse_notification_data,
)


def _send_response(success: bool, error: str | None = None):
    response = MagicMock()
    response.success = success
    response.exception = Exception(error) if error else None
    return response


class NotificationPayloadTests(unittest.TestCase):
    def test_every_type_has_a_payload_model(self):
        self.assertEqual(set(PAYLOAD_MODELS), set(NotificationType))

    def test_required_fields_per_type(self):
        cases = {
            NotificationType.INCOMING_CALL: {"callId": "c", "callerId": "u"},
            NotificationType.COMMENT_MENTION: {"commentId": "c", "postId": "p"},
            NotificationType.MEMBERSHIP_INVITATION: {"communityId": "g"},
            NotificationType.BADGE_AWARDED: {"badgeId": "b"},
            NotificationType.DEFAULT: {"uid": "u"},
        }
        for kind, data in cases.items():
            parse_notification_data(kind, data)
            with self.assertRaises(ValueError, msg=kind):
                parse_notification_data(kind, {})

    def test_unlisted_type_falls_back_to_default_payload(self):
        payload = parse_notification_data("post_upvote", {"uid": "u1", "postId": "p1"})
        self.assertIsInstance(payload, DefaultPayload)

        message = PushMessage.build("post_upvote", payload, title="t", body="b")

        self.assertEqual(
            message.data, {"type": "post_upvote", "uid": "u1", "postId": "p1"}
        )

    def test_error_names_missing_fields(self):
        with self.assertRaises(ValueError) as ctx:
            parse_notification_data(NotificationType.COMMENT_MENTION, {"postId": "p"})
        self.assertIn("commentId", str(ctx.exception))
        self.assertNotIn("postId", str(ctx.exception))

    def test_message_data_is_stringified_and_tagged(self):
        payload = parse_notification_data(
            NotificationType.COMMENT_MENTION,
            {"commentId": "c1", "postId": "p1", "depth": 2, "extra": {"a": 1}},
        )
        self.assertIsInstance(payload, CommentMentionPayload)

        message = PushMessage.build(
            NotificationType.COMMENT_MENTION, payload, title="t", body="b"
        )

        self.assertEqual(
            message.data,
            {
                "type": "comment_mention",
                "commentId": "c1",
                "postId": "p1",
                "depth": "2",
                "extra": '{"a": 1}',
            },
        )


class FcmPushSenderTests(unittest.TestCase):
    def setUp(self):
        self.sender = FcmPushSender(app=None)
        self.message = PushMessage(title="Hi", body="There", data={"type": "default", "uid": "u"})

    @patch("relay.push.messaging.send_each_for_multicast")
    def test_outcomes_follow_token_order(self, mock_send):
        mock_send.return_value = MagicMock(
            responses=[
                _send_response(True),
                _send_response(False, "Requested entity was not found."),
                _send_response(True),
            ]
        )

        result = self.sender.send_multicast(["a", "b", "c"], self.message)

        self.assertEqual(result.success_count, 2)
        self.assertEqual(result.failure_count, 1)
        self.assertEqual([o.token for o in result.failed], ["b"])
        self.assertEqual(result.failed[0].error, "Requested entity was not found.")
        multicast = mock_send.call_args.args[0]
        self.assertEqual(multicast.tokens, ["a", "b", "c"])
        self.assertEqual(multicast.data, {"type": "default", "uid": "u"})
        self.assertEqual(multicast.notification.title, "Hi")

    @patch("relay.push.messaging.send_each_for_multicast")
    def test_large_token_lists_are_chunked(self, mock_send):
        tokens = [f"t{i}" for i in range(FCM_MULTICAST_LIMIT + 3)]
        mock_send.side_effect = lambda multicast, app=None: MagicMock(
            responses=[_send_response(True) for _ in multicast.tokens]
        )

        result = self.sender.send_multicast(tokens, self.message)

        self.assertEqual(mock_send.call_count, 2)
        self.assertEqual(len(mock_send.call_args_list[0].args[0].tokens), FCM_MULTICAST_LIMIT)
        self.assertEqual(len(mock_send.call_args_list[1].args[0].tokens), 3)
        self.assertEqual(result.success_count, len(tokens))

    @patch("relay.push.messaging.send_each_for_multicast")
    def test_whole_send_failure_raises(self, mock_send):
        mock_send.side_effect = firebase_exceptions.UnauthenticatedError("bad credentials")
        with self.assertRaises(PushDispatchError):
            self.sender.send_multicast(["a"], self.message)

    @patch("relay.push.messaging.send")
    def test_single_send(self, mock_send):
        self.sender.send("a", self.message)
        sent = mock_send.call_args.args[0]
        self.assertEqual(sent.token, "a")
        self.assertEqual(sent.data, {"type": "default", "uid": "u"})

    @patch("relay.push.messaging.send")
    def test_single_send_failure_raises(self, mock_send):
        mock_send.side_effect = firebase_exceptions.NotFoundError("unregistered")
        with self.assertRaises(PushDispatchError):
            self.sender.send("a", self.message)


if __name__ == "__main__":
    unittest.main()
