# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional


@dataclass
class PostRecord:
    """A post; its votes live in the `post_votes` subcollection."""

    id: str
    author_id: str


@dataclass
class UserRecord:
    id: str
    activity_points: int = 0
    badges: List[str] = field(default_factory=list)
    fcm_tokens: List[str] = field(default_factory=list)


@dataclass
class SuspensionRecord:
    """A timed suspension of a user inside one community."""

    id: str
    user_id: str
    community_id: str
    expires_at: Optional[datetime] = None

    @property
    def membership_id(self) -> str:
        return f"{self.community_id}_{self.user_id}"


@dataclass
class BadgeDefinition:
    id: str
    name: str
    threshold: int


@dataclass
class NotificationRecord:
    """In-app notification stored in Firestore (distinct from the push)."""

    title: str
    message: str
    type: str
    user_id: str
    sender_id: str
    created_at: (
        Any  # Firestore timestamp (created with firestore_v1.SERVER_TIMESTAMP)
    )
    is_read: bool = False


@dataclass
class BadgeAward:
    """One badge granted to one user, with the in-app notification to store."""

    user_id: str
    badge: BadgeDefinition
    notification: NotificationRecord
