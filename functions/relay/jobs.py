"""
Scheduled maintenance jobs: activity-point accrual, suspension expiry and
threshold badge awards.

Jobs take their collaborators as arguments; `register_maintenance_jobs`
binds them onto a JobScheduler.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from google.cloud.firestore_v1 import SERVER_TIMESTAMP

from relay.config import Settings
from relay.errors import PushDispatchError
from relay.push import BadgeAwardedPayload, NotificationType, PushMessage, PushSender
from relay.scheduler import JobScheduler
from relay.store import SocialStore
from shared.firebase_constants import SYSTEM_SENDER_ID
from shared.types import BadgeAward, BadgeDefinition, NotificationRecord, UserRecord

logger = logging.getLogger(__name__)

POINTS_JOB = "accrue_activity_points"
SUSPENSIONS_JOB = "expire_suspensions"
BADGES_JOB = "award_badges"

BADGE_NOTIFICATION_TITLE = "New badge unlocked!"


@dataclass
class PointsResult:
    posts_scanned: int
    users_updated: int
    totals: dict[str, int] = field(default_factory=dict)


@dataclass
class SuspensionResult:
    lifted: int


@dataclass
class BadgeResult:
    awarded: int
    pushes_sent: int = 0
    pushes_failed: int = 0


def accrue_activity_points(store: SocialStore) -> PointsResult:
    """
    Recompute every author's activity points from the votes on their posts
    and overwrite the stored totals.

    Overwriting makes repeated runs over unchanged votes produce the same
    totals.
    """
    totals: dict[str, int] = defaultdict(int)
    posts = store.list_posts()
    for post in posts:
        totals[post.author_id] += store.count_votes(post.id)

    updated = store.set_activity_points(dict(totals)) if totals else 0
    logger.info(
        "Activity points recomputed from %d posts for %d users", len(posts), updated
    )
    return PointsResult(posts_scanned=len(posts), users_updated=updated, totals=dict(totals))


def expire_suspensions(
    store: SocialStore, now: Optional[datetime] = None
) -> SuspensionResult:
    """Lift every suspension whose expiry is at or before `now`."""
    now = now or datetime.now(timezone.utc)
    expired = store.list_expired_suspensions(now)
    if not expired:
        logger.info("No expired suspensions")
        return SuspensionResult(lifted=0)

    lifted = store.lift_suspensions(expired)
    logger.info("Lifted %d expired suspensions", lifted)
    return SuspensionResult(lifted=lifted)


def _badge_notification(user_id: str, badge: BadgeDefinition) -> NotificationRecord:
    return NotificationRecord(
        title=BADGE_NOTIFICATION_TITLE,
        message=f"Congratulations! You earned the {badge.name} badge.",
        type=NotificationType.BADGE_AWARDED.value,
        user_id=user_id,
        sender_id=SYSTEM_SENDER_ID,
        created_at=SERVER_TIMESTAMP,
        is_read=False,
    )


def find_badge_awards(
    users: list[UserRecord], badges: list[BadgeDefinition]
) -> list[BadgeAward]:
    """Badges each user has reached the threshold for but does not hold yet."""
    awards = []
    ordered = sorted(badges, key=lambda badge: badge.threshold)
    for user in users:
        held = set(user.badges)
        for badge in ordered:
            if user.activity_points >= badge.threshold and badge.id not in held:
                awards.append(
                    BadgeAward(
                        user_id=user.id,
                        badge=badge,
                        notification=_badge_notification(user.id, badge),
                    )
                )
                held.add(badge.id)
    return awards


def award_badges(store: SocialStore, push: PushSender) -> BadgeResult:
    """
    Grant newly reached badges and tell the users about them.

    All badge grants and in-app notifications are committed first; the push
    notifications go out afterwards, one token at a time. A failed push is
    logged and counted, never retried, and does not undo the grant.
    """
    users = store.list_users()
    awards = find_badge_awards(users, store.list_badges())
    if not awards:
        logger.info("No new badges to award")
        return BadgeResult(awarded=0)

    store.record_badge_awards(awards)

    tokens_by_user = {user.id: user.fcm_tokens for user in users}
    result = BadgeResult(awarded=len(awards))
    for award in awards:
        message = PushMessage.build(
            NotificationType.BADGE_AWARDED,
            BadgeAwardedPayload(badge_id=award.badge.id),
            title=award.notification.title,
            body=award.notification.message,
        )
        for token in tokens_by_user.get(award.user_id, []):
            try:
                push.send(token, message)
                result.pushes_sent += 1
            except PushDispatchError as e:
                result.pushes_failed += 1
                logger.warning(
                    "Badge push to user %s failed: %s", award.user_id, e
                )

    logger.info(
        "Awarded %d badges (%d pushes sent, %d failed)",
        result.awarded,
        result.pushes_sent,
        result.pushes_failed,
    )
    return result


def register_maintenance_jobs(
    scheduler: JobScheduler,
    *,
    store: SocialStore,
    push: PushSender,
    settings: Settings,
) -> None:
    scheduler.register(
        POINTS_JOB,
        lambda: accrue_activity_points(store),
        settings.points_interval_seconds,
    )
    scheduler.register(
        SUSPENSIONS_JOB,
        lambda: expire_suspensions(store),
        settings.suspension_interval_seconds,
    )
    scheduler.register(
        BADGES_JOB,
        lambda: award_badges(store, push),
        settings.badge_interval_seconds,
    )
