"""
Firestore access for the social-app state the maintenance jobs touch, plus
an in-memory implementation for development and tests.

Both implementations compose their multi-document writes into atomic
batches. A Firestore batch holds at most MAX_BATCH_WRITES writes, so large
workloads are committed as successive batches; writes that must stay
together (a suspension delete and its membership flip, a badge grant and its
notification) are never split across batches.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import fields
from datetime import datetime
from typing import Iterable, Iterator, Optional, Protocol, TypeVar

from dacite import Config, DaciteError, from_dict
from google.cloud.firestore_v1 import ArrayUnion, Client
from google.cloud.firestore_v1.base_query import FieldFilter

from shared.firebase_constants import (
    BADGES_COLLECTION,
    COMMUNITY_MEMBERSHIPS_COLLECTION,
    MAX_BATCH_WRITES,
    MEMBERSHIP_STATUS_ACTIVE,
    NOTIFICATIONS_COLLECTION,
    POST_VOTES_COLLECTION,
    POSTS_COLLECTION,
    SUSPENDED_USERS_COLLECTION,
    USERS_COLLECTION,
)
from shared.json_utils import convert_keys
from shared.types import (
    BadgeAward,
    BadgeDefinition,
    PostRecord,
    SuspensionRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SocialStore(Protocol):
    """Interface for the document-store reads and batched writes."""

    def list_posts(self) -> list[PostRecord]:
        ...

    def count_votes(self, post_id: str) -> int:
        ...

    def set_activity_points(self, totals: dict[str, int]) -> int:
        ...

    def list_expired_suspensions(self, now: datetime) -> list[SuspensionRecord]:
        ...

    def lift_suspensions(self, suspensions: list[SuspensionRecord]) -> int:
        ...

    def list_badges(self) -> list[BadgeDefinition]:
        ...

    def list_users(self) -> list[UserRecord]:
        ...

    def record_badge_awards(self, awards: list[BadgeAward]) -> int:
        ...


def _chunks(items: list[T], size: int) -> Iterator[list[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _record_from_doc(data_class: type[T], doc_id: str, data: Optional[dict]) -> Optional[T]:
    """
    Parse a camelCase document into a record dataclass; None if malformed.

    Null fields count as absent: optional fields fall back to their defaults
    and a null required field makes the document malformed. Numbers are cast
    to int since Firestore may hand back floats for numeric fields.
    """
    values = {
        key: value
        for key, value in convert_keys(dict(data or {}), "camel_to_snake").items()
        if value is not None
    }
    values["id"] = doc_id
    try:
        return from_dict(data_class=data_class, data=values, config=Config(cast=[int]))
    except (DaciteError, TypeError, ValueError) as e:
        logger.warning("Skipping malformed %s %s: %s", data_class.__name__, doc_id, e)
        return None


def _parse_all(data_class: type[T], docs: Iterable[tuple[str, Optional[dict]]]) -> list[T]:
    records = (_record_from_doc(data_class, doc_id, data) for doc_id, data in docs)
    return [record for record in records if record is not None]


def _notification_doc(award: BadgeAward) -> dict:
    # Shallow copy: the SERVER_TIMESTAMP sentinel must reach Firestore as is.
    notification = award.notification
    return convert_keys(
        {f.name: getattr(notification, f.name) for f in fields(notification)},
        "snake_to_camel",
    )


class FirestoreSocialStore:
    def __init__(self, client: Client):
        self.db = client

    def _docs(self, source) -> list[tuple[str, Optional[dict]]]:
        """Stream a collection or query into (id, data) pairs."""
        return [(snapshot.id, snapshot.to_dict()) for snapshot in source.stream()]

    def list_posts(self) -> list[PostRecord]:
        return _parse_all(PostRecord, self._docs(self.db.collection(POSTS_COLLECTION)))

    def count_votes(self, post_id: str) -> int:
        aggregate = (
            self.db.collection(POSTS_COLLECTION)
            .document(post_id)
            .collection(POST_VOTES_COLLECTION)
            .count()
        )
        results = aggregate.get()
        return int(results[0][0].value) if results else 0

    def set_activity_points(self, totals: dict[str, int]) -> int:
        users = self.db.collection(USERS_COLLECTION)
        written = 0
        for chunk in _chunks(sorted(totals), MAX_BATCH_WRITES):
            batch = self.db.batch()
            for user_id in chunk:
                batch.set(
                    users.document(user_id),
                    {"activityPoints": totals[user_id]},
                    merge=True,
                )
            batch.commit()
            written += len(chunk)
        return written

    def list_expired_suspensions(self, now: datetime) -> list[SuspensionRecord]:
        query = self.db.collection(SUSPENDED_USERS_COLLECTION).where(
            filter=FieldFilter("expiresAt", "<=", now)
        )
        return _parse_all(SuspensionRecord, self._docs(query))

    def lift_suspensions(self, suspensions: list[SuspensionRecord]) -> int:
        suspended = self.db.collection(SUSPENDED_USERS_COLLECTION)
        memberships = self.db.collection(COMMUNITY_MEMBERSHIPS_COLLECTION)
        lifted = 0
        # Two writes per suspension.
        for chunk in _chunks(suspensions, MAX_BATCH_WRITES // 2):
            membership_refs = [memberships.document(s.membership_id) for s in chunk]
            existing = {
                snapshot.id
                for snapshot in self.db.get_all(membership_refs)
                if snapshot.exists
            }
            batch = self.db.batch()
            for suspension, membership_ref in zip(chunk, membership_refs):
                batch.delete(suspended.document(suspension.id))
                if suspension.membership_id in existing:
                    batch.update(membership_ref, {"status": MEMBERSHIP_STATUS_ACTIVE})
                else:
                    logger.warning(
                        "No membership %s for suspension %s",
                        suspension.membership_id,
                        suspension.id,
                    )
            batch.commit()
            lifted += len(chunk)
        return lifted

    def list_badges(self) -> list[BadgeDefinition]:
        return _parse_all(BadgeDefinition, self._docs(self.db.collection(BADGES_COLLECTION)))

    def list_users(self) -> list[UserRecord]:
        return _parse_all(UserRecord, self._docs(self.db.collection(USERS_COLLECTION)))

    def record_badge_awards(self, awards: list[BadgeAward]) -> int:
        users = self.db.collection(USERS_COLLECTION)
        notifications = self.db.collection(NOTIFICATIONS_COLLECTION)
        recorded = 0
        for chunk in _chunks(awards, MAX_BATCH_WRITES // 2):
            batch = self.db.batch()
            for award in chunk:
                batch.update(
                    users.document(award.user_id),
                    {"badges": ArrayUnion([award.badge.id])},
                )
                batch.set(notifications.document(), _notification_doc(award))
            batch.commit()
            recorded += len(chunk)
        return recorded


class _InMemoryBatch:
    """Stages mutations and applies them all at once on commit."""

    def __init__(self, store: "InMemorySocialStore"):
        self.store = store
        self.ops: list = []

    def stage(self, op) -> None:
        self.ops.append(op)

    def commit(self) -> None:
        if self.store.fail_commits:
            raise RuntimeError("simulated batch commit failure")
        for op in self.ops:
            op()
        self.store.commits += 1


class InMemorySocialStore:
    """Simple in-memory document store for development and tests.

    Documents are kept as camelCase dicts, as Firestore would return them.
    """

    def __init__(self):
        self.posts: dict[str, dict] = {}
        self.votes: dict[str, set[str]] = {}
        self.users: dict[str, dict] = {}
        self.suspensions: dict[str, dict] = {}
        self.memberships: dict[str, dict] = {}
        self.badges: dict[str, dict] = {}
        self.notifications: dict[str, dict] = {}
        self.fail_commits = False
        self.commits = 0

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        for collection in (
            self.posts,
            self.votes,
            self.users,
            self.suspensions,
            self.memberships,
            self.badges,
            self.notifications,
        ):
            collection.clear()
        self.fail_commits = False
        self.commits = 0

    # Seeding helpers

    def add_post(self, post_id: str, author_id: str, voters: Iterable[str] = ()) -> None:
        self.posts[post_id] = {"authorId": author_id}
        self.votes[post_id] = set(voters)

    def add_user(
        self,
        user_id: str,
        *,
        activity_points: int = 0,
        badges: Iterable[str] = (),
        fcm_tokens: Iterable[str] = (),
    ) -> None:
        self.users[user_id] = {
            "activityPoints": activity_points,
            "badges": list(badges),
            "fcmTokens": list(fcm_tokens),
        }

    def add_suspension(
        self, suspension_id: str, user_id: str, community_id: str, expires_at: datetime
    ) -> None:
        self.suspensions[suspension_id] = {
            "userId": user_id,
            "communityId": community_id,
            "expiresAt": expires_at,
        }

    def add_membership(self, community_id: str, user_id: str, status: str) -> None:
        self.memberships[f"{community_id}_{user_id}"] = {
            "communityId": community_id,
            "userId": user_id,
            "status": status,
        }

    def add_badge(self, badge_id: str, name: str, threshold: int) -> None:
        self.badges[badge_id] = {"name": name, "threshold": threshold}

    # SocialStore

    def list_posts(self) -> list[PostRecord]:
        return _parse_all(PostRecord, self.posts.items())

    def count_votes(self, post_id: str) -> int:
        return len(self.votes.get(post_id, ()))

    def set_activity_points(self, totals: dict[str, int]) -> int:
        written = 0
        for chunk in _chunks(sorted(totals), MAX_BATCH_WRITES):
            batch = _InMemoryBatch(self)
            for user_id in chunk:
                batch.stage(
                    lambda uid=user_id: self.users.setdefault(uid, {}).update(
                        {"activityPoints": totals[uid]}
                    )
                )
            batch.commit()
            written += len(chunk)
        return written

    def list_expired_suspensions(self, now: datetime) -> list[SuspensionRecord]:
        expired = [
            (doc_id, doc)
            for doc_id, doc in self.suspensions.items()
            if doc.get("expiresAt") is not None and doc["expiresAt"] <= now
        ]
        return _parse_all(SuspensionRecord, expired)

    def lift_suspensions(self, suspensions: list[SuspensionRecord]) -> int:
        lifted = 0
        for chunk in _chunks(suspensions, MAX_BATCH_WRITES // 2):
            batch = _InMemoryBatch(self)
            for suspension in chunk:
                batch.stage(lambda sid=suspension.id: self.suspensions.pop(sid, None))
                membership = self.memberships.get(suspension.membership_id)
                if membership is not None:
                    batch.stage(
                        lambda m=membership: m.update({"status": MEMBERSHIP_STATUS_ACTIVE})
                    )
                else:
                    logger.warning(
                        "No membership %s for suspension %s",
                        suspension.membership_id,
                        suspension.id,
                    )
            batch.commit()
            lifted += len(chunk)
        return lifted

    def list_badges(self) -> list[BadgeDefinition]:
        return _parse_all(BadgeDefinition, self.badges.items())

    def list_users(self) -> list[UserRecord]:
        return _parse_all(UserRecord, self.users.items())

    def record_badge_awards(self, awards: list[BadgeAward]) -> int:
        recorded = 0
        for chunk in _chunks(awards, MAX_BATCH_WRITES // 2):
            batch = _InMemoryBatch(self)
            for award in chunk:
                batch.stage(lambda a=award: self._grant_badge(a.user_id, a.badge.id))
                batch.stage(
                    lambda a=award: self.notifications.__setitem__(
                        uuid.uuid4().hex, _notification_doc(a)
                    )
                )
            batch.commit()
            recorded += len(chunk)
        return recorded

    def _grant_badge(self, user_id: str, badge_id: str) -> None:
        user = self.users.setdefault(user_id, {})
        badges = user.get("badges") or []
        if badge_id not in badges:
            user["badges"] = [*badges, badge_id]
