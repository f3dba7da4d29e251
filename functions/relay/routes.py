"""
HTTP routes for the relay API.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, is_dataclass
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query

from relay.dependencies import (
    get_identity,
    get_push_sender,
    get_rtc_issuer,
    get_safe_search,
    get_scheduler,
    get_toxicity,
)
from relay.errors import IdentityError, ModerationError, PushDispatchError, TokenIssueError
from relay.identity import IdentityProvider
from relay.moderation import (
    SafeSearchClient,
    ToxicityClient,
    ToxicityVerdict,
    decode_base64_image,
)
from relay.push import PushMessage, PushSender
from relay.rtc import RtcTokenIssuer
from relay.scheduler import JobScheduler, UnknownJobError
from relay.schemas import (
    AccessTokenResponse,
    AnalyzeImageRequest,
    FailedToken,
    HealthResponse,
    ImageBatchResponse,
    ImageLabels,
    ImageSafetyResponse,
    IsAdminResponse,
    JobListResponse,
    JobRunResponse,
    JobStatus,
    MessageResponse,
    PushNotificationRequest,
    PushNotificationResponse,
    ToxicityBatchResponse,
    ToxicityRequest,
    ToxicityResponse,
    TextToxicityResult,
    ToxicityResult,
    ToxicityScores,
    UidRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Agora uids are unsigned 32-bit integers.
MAX_RTC_UID = 2**32 - 1


@router.get("/", response_model=HealthResponse, include_in_schema=False)
@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok")


@router.get("/access_token", response_model=AccessTokenResponse, include_in_schema=False)
@router.get("/agoraAccessToken", response_model=AccessTokenResponse)
def agora_access_token(
    channel_name: Optional[str] = Query(None, alias="channelName"),
    uid: int = Query(0, ge=0, le=MAX_RTC_UID),
    rtc: RtcTokenIssuer = Depends(get_rtc_issuer),
):
    """Issue a publisher token for `channelName`."""
    if not channel_name or not channel_name.strip():
        raise HTTPException(status_code=400, detail="Channel name is required")
    try:
        issued = rtc.issue(channel_name, uid)
    except TokenIssueError:
        logger.exception("Failed to generate token for channel %s", channel_name)
        raise HTTPException(status_code=500, detail="Failed to generate token")
    return AccessTokenResponse(token=issued.token)


@router.post("/sendPushNotification", response_model=PushNotificationResponse)
def send_push_notification(
    payload: PushNotificationRequest,
    push: PushSender = Depends(get_push_sender),
):
    """
    Send one notification to every token in a single multicast.

    Per-token failures are reported in the body; only a failure of the whole
    send turns into a 500.
    """
    message = PushMessage.build(
        payload.type, payload.payload, title=payload.title, body=payload.message
    )
    try:
        result = push.send_multicast(payload.tokens, message)
    except PushDispatchError:
        logger.exception("Error sending messages")
        raise HTTPException(status_code=500, detail="Notification failed to send")

    logger.info("Successfully sent %d messages", result.success_count)
    if result.failed:
        logger.warning(
            "Failed to send messages: %s", [outcome.token for outcome in result.failed]
        )

    return PushNotificationResponse(
        success=result.success_count,
        failure=result.failure_count,
        failed_tokens=[
            FailedToken(token=outcome.token, error=outcome.error or "")
            for outcome in result.failed
        ],
    )


@router.post(
    "/detectAdultContent",
    response_model=Union[ImageSafetyResponse, ImageBatchResponse],
    include_in_schema=False,
)
@router.post(
    "/analyzeImage", response_model=Union[ImageSafetyResponse, ImageBatchResponse]
)
def analyze_image(
    payload: AnalyzeImageRequest,
    classifier: SafeSearchClient = Depends(get_safe_search),
):
    """Single image -> `{isSafe}`; batch -> per-image likelihood labels."""
    try:
        images = [decode_base64_image(encoded) for encoded in payload.encoded_images()]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        verdicts = [classifier.detect(image) for image in images]
    except ModerationError as e:
        logger.error("Image analysis failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    if payload.is_batch:
        return ImageBatchResponse(
            results=[ImageLabels(**verdict.as_dict()) for verdict in verdicts]
        )
    return ImageSafetyResponse(is_safe=verdicts[0].is_safe)


def _toxicity_result(verdict: ToxicityVerdict, text: Optional[str] = None) -> ToxicityResult:
    scores = ToxicityScores(**verdict.score_map())
    if text is None:
        return ToxicityResult(scores=scores, is_toxic=verdict.is_toxic)
    return TextToxicityResult(text=text, scores=scores, is_toxic=verdict.is_toxic)


@router.post(
    "/detectToxicity", response_model=Union[ToxicityResponse, ToxicityBatchResponse]
)
def detect_toxicity(
    payload: ToxicityRequest,
    classifier: ToxicityClient = Depends(get_toxicity),
):
    try:
        verdicts = [classifier.analyze(text) for text in payload.texts_to_score()]
    except ModerationError as e:
        logger.error("Toxicity analysis failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    if payload.is_batch:
        return ToxicityBatchResponse(
            results=[
                _toxicity_result(verdict, text)
                for text, verdict in zip(payload.texts, verdicts)
            ]
        )
    return ToxicityResponse(result=_toxicity_result(verdicts[0]))


@router.post("/disableUserAccount", response_model=MessageResponse)
def disable_user_account(
    payload: UidRequest, identity: IdentityProvider = Depends(get_identity)
):
    try:
        identity.disable_user(payload.uid)
    except IdentityError as e:
        logger.error("Failed to disable user %s: %s", payload.uid, e)
        raise HTTPException(status_code=500, detail=str(e))
    logger.info("Disabled user %s", payload.uid)
    return MessageResponse(message=f"Successfully disabled user {payload.uid}")


@router.post("/promoteToAdmin", response_model=MessageResponse)
def promote_to_admin(
    payload: UidRequest, identity: IdentityProvider = Depends(get_identity)
):
    try:
        identity.promote_to_admin(payload.uid)
    except IdentityError as e:
        logger.error("Failed to promote user %s: %s", payload.uid, e)
        raise HTTPException(status_code=500, detail=str(e))
    logger.info("Promoted user %s to admin", payload.uid)
    return MessageResponse(message=f"User {payload.uid} has been promoted to admin")


@router.post("/isAdmin", response_model=IsAdminResponse)
def is_admin(payload: UidRequest, identity: IdentityProvider = Depends(get_identity)):
    try:
        return IsAdminResponse(is_admin=identity.is_admin(payload.uid))
    except IdentityError as e:
        logger.error("Failed to check admin role for %s: %s", payload.uid, e)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/jobs", response_model=JobListResponse)
def list_jobs(scheduler: JobScheduler = Depends(get_scheduler)):
    return JobListResponse(jobs=[JobStatus(**status) for status in scheduler.status()])


@router.post("/jobs/{name}/run", response_model=JobRunResponse)
def run_job(name: str, scheduler: JobScheduler = Depends(get_scheduler)):
    """Run a maintenance job now, unless a run of it is already in flight."""
    try:
        run = scheduler.run_now(name)
    except UnknownJobError:
        raise HTTPException(status_code=404, detail=f"Unknown job: {name}")
    if run.error:
        raise HTTPException(status_code=500, detail=run.error)
    result = asdict(run.result) if is_dataclass(run.result) else None
    return JobRunResponse(job=run.name, ran=run.ran, result=result)
