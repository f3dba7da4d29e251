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

POSTS_COLLECTION = "posts"
POST_VOTES_COLLECTION = "post_votes"
USERS_COLLECTION = "users"
SUSPENDED_USERS_COLLECTION = "suspended_users"
COMMUNITY_MEMBERSHIPS_COLLECTION = "community_memberships"
BADGES_COLLECTION = "badges"
NOTIFICATIONS_COLLECTION = "notifications"

MEMBERSHIP_STATUS_ACTIVE = "active"
SYSTEM_SENDER_ID = "system"

# Firestore rejects batches with more writes than this.
MAX_BATCH_WRITES = 500
