"""
Pydantic schemas for the relay API. Wire names are camelCase.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)

from relay.push import NotificationPayload, NotificationType, parse_notification_data

# Firebase Auth uids are at most 128 characters.
UID_MAX_LENGTH = 128

NonEmptyStr = Annotated[str, Field(min_length=1)]


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AccessTokenResponse(WireModel):
    token: str


class PushNotificationRequest(WireModel):
    tokens: list[NonEmptyStr]
    title: Optional[str] = None
    message: Optional[str] = None
    type: NonEmptyStr = NotificationType.DEFAULT.value
    data: Optional[dict[str, Any]] = None

    _payload: Optional[NotificationPayload] = PrivateAttr(default=None)

    @field_validator("tokens")
    @classmethod
    def _tokens_not_empty(cls, tokens: list[str]) -> list[str]:
        if not tokens:
            raise ValueError("Tokens array is required and should not be empty")
        return tokens

    @model_validator(mode="after")
    def _validate_payload(self) -> "PushNotificationRequest":
        self._payload = parse_notification_data(self.type, self.data)
        return self

    @property
    def payload(self) -> NotificationPayload:
        return self._payload


class FailedToken(WireModel):
    token: str
    error: str


class PushNotificationResponse(WireModel):
    success: int
    failure: int
    failed_tokens: list[FailedToken] = Field(default_factory=list, alias="failedTokens")


class AnalyzeImageRequest(WireModel):
    base64_image: Optional[str] = Field(default=None, alias="base64Image")
    base64_images: Optional[list[str]] = Field(default=None, alias="base64Images")

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "AnalyzeImageRequest":
        if self.base64_image is None and self.base64_images is None:
            raise ValueError("base64Image or base64Images is required")
        if self.base64_image is not None and self.base64_images is not None:
            raise ValueError("Provide either base64Image or base64Images, not both")
        if self.base64_images is not None and not self.base64_images:
            raise ValueError("base64Images must not be empty")
        return self

    @property
    def is_batch(self) -> bool:
        return self.base64_images is not None

    def encoded_images(self) -> list[str]:
        return self.base64_images if self.is_batch else [self.base64_image]


class ImageSafetyResponse(WireModel):
    is_safe: bool = Field(alias="isSafe")


class ImageLabels(WireModel):
    adult: str
    violence: str
    medical: str
    racy: str
    spoof: str
    is_safe: bool = Field(alias="isSafe")


class ImageBatchResponse(WireModel):
    results: list[ImageLabels]


class ToxicityRequest(WireModel):
    text: Optional[str] = None
    texts: Optional[list[str]] = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "ToxicityRequest":
        if self.text is None and self.texts is None:
            raise ValueError("text or texts is required")
        if self.text is not None and self.texts is not None:
            raise ValueError("Provide either text or texts, not both")
        items = self.texts if self.texts is not None else [self.text]
        if not items or any(not item.strip() for item in items):
            raise ValueError("Text must not be empty")
        return self

    @property
    def is_batch(self) -> bool:
        return self.texts is not None

    def texts_to_score(self) -> list[str]:
        return self.texts if self.is_batch else [self.text]


class ToxicityScores(WireModel):
    toxicity: float
    severe_toxicity: float = Field(alias="severeToxicity")
    insult: float
    profanity: float
    threat: float


class ToxicityResult(WireModel):
    scores: ToxicityScores
    is_toxic: bool = Field(alias="isToxic")


class TextToxicityResult(ToxicityResult):
    """A batch entry; echoes the scored text."""

    text: str


class ToxicityResponse(WireModel):
    result: ToxicityResult


class ToxicityBatchResponse(WireModel):
    results: list[TextToxicityResult]


class UidRequest(WireModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    uid: str = Field(..., min_length=1, max_length=UID_MAX_LENGTH)


class MessageResponse(WireModel):
    message: str


class IsAdminResponse(WireModel):
    is_admin: bool = Field(alias="isAdmin")


class HealthResponse(WireModel):
    status: str


class JobStatus(WireModel):
    name: str
    interval_seconds: float = Field(alias="intervalSeconds")
    running: bool
    last_run_at: Optional[str] = Field(default=None, alias="lastRunAt")
    next_run_at: Optional[str] = Field(default=None, alias="nextRunAt")
    last_error: Optional[str] = Field(default=None, alias="lastError")
    runs: int = 0
    skipped: int = 0


class JobListResponse(WireModel):
    jobs: list[JobStatus]


class JobRunResponse(WireModel):
    job: str
    ran: bool
    result: Optional[dict] = None
