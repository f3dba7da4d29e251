"""
Dependency wiring for the FastAPI app.

`build_clients` constructs every vendor client once; `create_app` keeps the
result on `app.state.clients` and the getters below hand the pieces to the
routes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

import firebase_admin
from fastapi import Depends, Request
from firebase_admin import credentials, firestore

from relay.config import Settings
from relay.errors import ConfigurationError
from relay.identity import (
    FirebaseIdentityProvider,
    IdentityProvider,
    InMemoryIdentityProvider,
)
from relay.moderation import (
    PerspectiveToxicityClient,
    SafeSearchClient,
    StaticSafeSearchClient,
    StaticToxicityClient,
    ToxicityClient,
    VisionSafeSearchClient,
)
from relay.push import FcmPushSender, InMemoryPushSender, PushSender
from relay.rtc import RtcTokenIssuer
from relay.scheduler import JobScheduler
from relay.store import FirestoreSocialStore, InMemorySocialStore, SocialStore

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "relay"


@dataclass
class Clients:
    store: SocialStore
    push: PushSender
    identity: IdentityProvider
    safe_search: SafeSearchClient
    toxicity: ToxicityClient
    rtc: RtcTokenIssuer


def load_credentials(value: Optional[str]) -> Optional[credentials.Certificate]:
    """
    Service-account credentials from inline JSON or a key file path.

    Returns None when unset, which lets firebase_admin fall back to
    application-default credentials.
    """
    if not value or not value.strip():
        return None
    value = value.strip()
    try:
        if value.startswith("{"):
            return credentials.Certificate(json.loads(value))
        return credentials.Certificate(value)
    except (ValueError, OSError) as e:
        raise ConfigurationError(f"Invalid service account credentials: {e}") from e


def init_firebase_app(settings: Settings) -> firebase_admin.App:
    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass
    options = (
        {"projectId": settings.firebase_project_id}
        if settings.firebase_project_id
        else None
    )
    return firebase_admin.initialize_app(
        load_credentials(settings.google_application_credentials),
        options=options,
        name=FIREBASE_APP_NAME,
    )


def build_clients(settings: Settings) -> Clients:
    rtc = RtcTokenIssuer(
        app_id=settings.agora_app_id,
        app_certificate=settings.agora_app_certificate,
        expire_seconds=settings.agora_token_expire_seconds,
    )
    if settings.use_in_memory_backends:
        logger.info("Using in-memory backends")
        return Clients(
            store=InMemorySocialStore(),
            push=InMemoryPushSender(),
            identity=InMemoryIdentityProvider(),
            safe_search=StaticSafeSearchClient(),
            toxicity=StaticToxicityClient(),
            rtc=rtc,
        )

    app = init_firebase_app(settings)
    return Clients(
        store=FirestoreSocialStore(firestore.client(app)),
        push=FcmPushSender(app),
        identity=FirebaseIdentityProvider(app),
        safe_search=VisionSafeSearchClient(
            api_key=settings.vision_api_key,
            credentials=app.credential.get_credential(),
        ),
        toxicity=PerspectiveToxicityClient(
            api_key=settings.perspective_api_key,
            url=settings.perspective_url,
            timeout=settings.http_timeout_seconds,
        ),
        rtc=rtc,
    )


def get_clients(request: Request) -> Clients:
    return request.app.state.clients


def get_scheduler(request: Request) -> JobScheduler:
    return request.app.state.scheduler


def get_rtc_issuer(clients: Clients = Depends(get_clients)) -> RtcTokenIssuer:
    return clients.rtc


def get_push_sender(clients: Clients = Depends(get_clients)) -> PushSender:
    return clients.push


def get_safe_search(clients: Clients = Depends(get_clients)) -> SafeSearchClient:
    return clients.safe_search


def get_toxicity(clients: Clients = Depends(get_clients)) -> ToxicityClient:
    return clients.toxicity


def get_identity(clients: Clients = Depends(get_clients)) -> IdentityProvider:
    return clients.identity
