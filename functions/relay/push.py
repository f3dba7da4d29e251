"""
Push notification dispatch over Firebase Cloud Messaging.

Every notification carries a `type` tag. Each known tag has its own payload
model listing the data fields the client needs to act on it; any other tag
uses the default payload.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional, Protocol

from firebase_admin import App, messaging
from firebase_admin import exceptions as firebase_exceptions
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relay.errors import PushDispatchError

logger = logging.getLogger(__name__)

# send_each_for_multicast rejects more tokens than this per call.
FCM_MULTICAST_LIMIT = 500


class NotificationType(StrEnum):
    INCOMING_CALL = "incoming_call"
    COMMENT_MENTION = "comment_mention"
    MEMBERSHIP_INVITATION = "membership_invitation"
    BADGE_AWARDED = "badge_awarded"
    DEFAULT = "default"


class NotificationPayload(BaseModel):
    """Base payload. Unknown keys are forwarded to the device untouched."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class IncomingCallPayload(NotificationPayload):
    call_id: str = Field(..., alias="callId", min_length=1)
    caller_id: str = Field(..., alias="callerId", min_length=1)


class CommentMentionPayload(NotificationPayload):
    comment_id: str = Field(..., alias="commentId", min_length=1)
    post_id: str = Field(..., alias="postId", min_length=1)


class MembershipInvitationPayload(NotificationPayload):
    community_id: str = Field(..., alias="communityId", min_length=1)


class BadgeAwardedPayload(NotificationPayload):
    badge_id: str = Field(..., alias="badgeId", min_length=1)


class DefaultPayload(NotificationPayload):
    uid: str = Field(..., min_length=1)


PAYLOAD_MODELS: dict[NotificationType, type[NotificationPayload]] = {
    NotificationType.INCOMING_CALL: IncomingCallPayload,
    NotificationType.COMMENT_MENTION: CommentMentionPayload,
    NotificationType.MEMBERSHIP_INVITATION: MembershipInvitationPayload,
    NotificationType.BADGE_AWARDED: BadgeAwardedPayload,
    NotificationType.DEFAULT: DefaultPayload,
}


def parse_notification_data(kind: str, data: Optional[dict]) -> NotificationPayload:
    """
    Validate `data` against the payload model registered for `kind`.

    Tags without a model of their own (e.g. `post_upvote`) use the default
    payload. Raises ValueError naming the missing/invalid fields.
    """
    model = PAYLOAD_MODELS.get(kind, DefaultPayload)
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        fields = sorted(
            {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
        )
        raise ValueError(
            f"data for '{kind}' notifications requires: {', '.join(fields)}"
        ) from e


def _stringify(value) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


@dataclass
class PushMessage:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(
        cls, kind: str, payload: NotificationPayload, title: str, body: str
    ) -> "PushMessage":
        """FCM data maps only accept string values."""
        data = {
            key: _stringify(value)
            for key, value in payload.model_dump(by_alias=True, exclude_none=True).items()
        }
        data["type"] = str(kind)
        return cls(title=title, body=body, data=data)


@dataclass
class TokenOutcome:
    token: str
    success: bool
    error: Optional[str] = None


@dataclass
class MulticastResult:
    outcomes: list[TokenOutcome] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failure_count(self) -> int:
        return len(self.outcomes) - self.success_count

    @property
    def failed(self) -> list[TokenOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]


class PushSender(Protocol):
    """Interface for delivering push notifications to device tokens."""

    def send(self, token: str, message: PushMessage) -> None:
        ...

    def send_multicast(self, tokens: list[str], message: PushMessage) -> MulticastResult:
        ...


class FcmPushSender:
    """Firebase Cloud Messaging sender bound to one firebase_admin app."""

    def __init__(self, app: Optional[App] = None):
        self.app = app

    def _notification(self, message: PushMessage) -> messaging.Notification:
        return messaging.Notification(title=message.title, body=message.body)

    def send(self, token: str, message: PushMessage) -> None:
        try:
            messaging.send(
                messaging.Message(
                    token=token,
                    notification=self._notification(message),
                    data=message.data,
                ),
                app=self.app,
            )
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            raise PushDispatchError(str(e)) from e

    def send_multicast(self, tokens: list[str], message: PushMessage) -> MulticastResult:
        result = MulticastResult()
        for start in range(0, len(tokens), FCM_MULTICAST_LIMIT):
            chunk = tokens[start : start + FCM_MULTICAST_LIMIT]
            multicast = messaging.MulticastMessage(
                tokens=chunk,
                notification=self._notification(message),
                data=message.data,
            )
            try:
                response = messaging.send_each_for_multicast(multicast, app=self.app)
            except (firebase_exceptions.FirebaseError, ValueError) as e:
                raise PushDispatchError(str(e)) from e

            for token, send_response in zip(chunk, response.responses):
                if send_response.success:
                    result.outcomes.append(TokenOutcome(token=token, success=True))
                    continue
                exc = send_response.exception
                result.outcomes.append(
                    TokenOutcome(
                        token=token,
                        success=False,
                        error=str(exc) if exc else "unknown_fcm_error",
                    )
                )
        return result


class InMemoryPushSender:
    """Test double that records messages and fails a configurable token set."""

    def __init__(self, failing_tokens: Optional[set[str]] = None):
        self.failing_tokens: set[str] = set(failing_tokens or ())
        self.fail_all = False
        self.sent: list[tuple[str, PushMessage]] = []

    def reset(self) -> None:
        self.failing_tokens.clear()
        self.fail_all = False
        self.sent.clear()

    def send(self, token: str, message: PushMessage) -> None:
        if self.fail_all:
            raise PushDispatchError("push sender unavailable")
        if token in self.failing_tokens:
            raise PushDispatchError(f"Requested entity was not found: {token}")
        self.sent.append((token, message))

    def send_multicast(self, tokens: list[str], message: PushMessage) -> MulticastResult:
        if self.fail_all:
            raise PushDispatchError("push sender unavailable")
        result = MulticastResult()
        for token in tokens:
            if token in self.failing_tokens:
                result.outcomes.append(
                    TokenOutcome(
                        token=token,
                        success=False,
                        error="Requested entity was not found.",
                    )
                )
            else:
                self.sent.append((token, message))
                result.outcomes.append(TokenOutcome(token=token, success=True))
        return result
