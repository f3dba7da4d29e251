"""
Agora RTC access-token issuance.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from agora_token_builder import RtcTokenBuilder

from relay.errors import TokenIssueError

# Agora role id for publishers (Role_Publisher in RtcTokenBuilder).
ROLE_PUBLISHER = 1


@dataclass
class IssuedToken:
    token: str
    channel_name: str
    uid: int
    expires_at: int


@dataclass
class RtcTokenIssuer:
    """Builds publisher tokens that expire `expire_seconds` after issuance."""

    app_id: Optional[str]
    app_certificate: Optional[str]
    expire_seconds: int = 3600
    clock: Callable[[], float] = time.time

    def issue(self, channel_name: str, uid: int = 0) -> IssuedToken:
        if not self.app_id or not self.app_certificate:
            raise TokenIssueError("Agora app id and certificate are not configured")

        privilege_expired_ts = int(self.clock()) + self.expire_seconds
        try:
            token = RtcTokenBuilder.buildTokenWithUid(
                self.app_id,
                self.app_certificate,
                channel_name,
                uid,
                ROLE_PUBLISHER,
                privilege_expired_ts,
            )
        except Exception as e:
            raise TokenIssueError(f"Failed to build token for {channel_name}: {e}") from e
        return IssuedToken(
            token=token,
            channel_name=channel_name,
            uid=uid,
            expires_at=privilege_expired_ts,
        )
