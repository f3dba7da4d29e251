"""
Content moderation: image safe-search (Cloud Vision) and text toxicity
(Perspective API), reduced to boolean verdicts with fixed thresholds.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import requests
from google.api_core import exceptions as google_exceptions
from google.cloud import vision

from relay.errors import ModerationError

SAFE_SEARCH_CATEGORIES = ("adult", "violence", "medical", "racy", "spoof")
SAFE_LIKELIHOODS = frozenset({"VERY_UNLIKELY", "UNLIKELY"})

# A text is toxic when any score is strictly greater than its threshold.
TOXICITY_THRESHOLDS: dict[str, float] = {
    "TOXICITY": 0.7,
    "SEVERE_TOXICITY": 0.5,
    "INSULT": 0.6,
    "PROFANITY": 0.6,
    "THREAT": 0.5,
}
TOXICITY_SCORE_KEYS: dict[str, str] = {
    "TOXICITY": "toxicity",
    "SEVERE_TOXICITY": "severeToxicity",
    "INSULT": "insult",
    "PROFANITY": "profanity",
    "THREAT": "threat",
}

_DATA_URL_PREFIX = re.compile(r"^data:[\w/+.-]+;base64,", re.IGNORECASE)


def decode_base64_image(encoded: str) -> bytes:
    """
    Decode a base64 image, tolerating a `data:<mime>;base64,` prefix.

    Raises ValueError for empty or undecodable input.
    """
    stripped = _DATA_URL_PREFIX.sub("", encoded.strip())
    if not stripped:
        raise ValueError("Image data is empty")
    try:
        return base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Image data is not valid base64") from e


@dataclass
class SafeSearchVerdict:
    """Likelihood label (e.g. "VERY_UNLIKELY") per safe-search category."""

    adult: str
    violence: str
    medical: str
    racy: str
    spoof: str

    @property
    def is_safe(self) -> bool:
        return all(
            getattr(self, category) in SAFE_LIKELIHOODS
            for category in SAFE_SEARCH_CATEGORIES
        )

    def as_dict(self) -> dict:
        labels = {category: getattr(self, category) for category in SAFE_SEARCH_CATEGORIES}
        labels["isSafe"] = self.is_safe
        return labels


@dataclass
class ToxicityVerdict:
    scores: dict[str, float]

    @property
    def is_toxic(self) -> bool:
        return any(
            self.scores.get(attribute, 0.0) > threshold
            for attribute, threshold in TOXICITY_THRESHOLDS.items()
        )

    def score_map(self) -> dict[str, float]:
        return {
            TOXICITY_SCORE_KEYS[attribute]: self.scores.get(attribute, 0.0)
            for attribute in TOXICITY_THRESHOLDS
        }


class SafeSearchClient(Protocol):
    def detect(self, image: bytes) -> SafeSearchVerdict:
        ...


class ToxicityClient(Protocol):
    def analyze(self, text: str) -> ToxicityVerdict:
        ...


class VisionSafeSearchClient:
    """
    Cloud Vision safe-search detection.

    The SDK client is created on first use so the service can boot without
    Vision credentials.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        credentials: Any = None,
        client: Optional[vision.ImageAnnotatorClient] = None,
    ):
        self.api_key = api_key
        self.credentials = credentials
        self._client = client

    @property
    def client(self) -> vision.ImageAnnotatorClient:
        if self._client is None:
            if self.api_key:
                self._client = vision.ImageAnnotatorClient(
                    client_options={"api_key": self.api_key}
                )
            else:
                self._client = vision.ImageAnnotatorClient(credentials=self.credentials)
        return self._client

    def detect(self, image: bytes) -> SafeSearchVerdict:
        try:
            response = self.client.safe_search_detection(image=vision.Image(content=image))
        except google_exceptions.GoogleAPIError as e:
            raise ModerationError(f"Vision API call failed: {e}") from e

        if response.error.message:
            raise ModerationError(response.error.message)

        annotation = response.safe_search_annotation
        return SafeSearchVerdict(
            **{
                category: vision.Likelihood(getattr(annotation, category)).name
                for category in SAFE_SEARCH_CATEGORIES
            }
        )


class PerspectiveToxicityClient:
    """Scores text with the Perspective API `comments:analyze` method."""

    def __init__(
        self,
        api_key: Optional[str],
        url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def analyze(self, text: str) -> ToxicityVerdict:
        if not self.api_key:
            raise ModerationError("Perspective API key is not configured")

        body = {
            "comment": {"text": text},
            "requestedAttributes": {attribute: {} for attribute in TOXICITY_THRESHOLDS},
            "doNotStore": True,
        }
        try:
            response = self.session.post(
                self.url,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ModerationError(f"Perspective API request failed: {e}") from e

        if response.status_code != 200:
            raise ModerationError(_perspective_error_message(response))

        attribute_scores = response.json().get("attributeScores", {})
        scores = {
            attribute: float(attribute_scores[attribute]["summaryScore"]["value"])
            for attribute in TOXICITY_THRESHOLDS
            if attribute in attribute_scores
        }
        return ToxicityVerdict(scores=scores)


def _perspective_error_message(response: requests.Response) -> str:
    try:
        message = response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        message = response.text or response.reason
    return f"Perspective API error ({response.status_code}): {message}"


@dataclass
class StaticSafeSearchClient:
    """In-memory classifier: every image gets `verdict` unless `error` is set."""

    verdict: SafeSearchVerdict = field(
        default_factory=lambda: SafeSearchVerdict(
            *(["VERY_UNLIKELY"] * len(SAFE_SEARCH_CATEGORIES))
        )
    )
    error: Optional[str] = None
    calls: int = 0

    def detect(self, image: bytes) -> SafeSearchVerdict:
        self.calls += 1
        if self.error:
            raise ModerationError(self.error)
        return self.verdict


@dataclass
class StaticToxicityClient:
    """In-memory scorer returning per-text scores (zeros for unknown text)."""

    scores_by_text: dict[str, dict[str, float]] = field(default_factory=dict)
    error: Optional[str] = None

    def analyze(self, text: str) -> ToxicityVerdict:
        if self.error:
            raise ModerationError(self.error)
        scores = self.scores_by_text.get(text)
        if scores is None:
            scores = {attribute: 0.0 for attribute in TOXICITY_THRESHOLDS}
        return ToxicityVerdict(scores=dict(scores))
