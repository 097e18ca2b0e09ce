"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header
from firebase_admin import firestore

from donation_backend.authz import Principal, resolve_principal
from donation_backend.config import Settings, get_settings
from donation_backend.dispatcher import NotificationDispatcher
from donation_backend.firebase import get_firebase_app
from donation_backend.identity import (
    FirebaseIdentityProvider,
    IdentityProvider,
    StaticIdentityProvider,
    parse_bearer,
)
from donation_backend.push import FcmPushChannel, InMemoryPushChannel, PushChannel
from donation_backend.storage import (
    CosStorageClient,
    FirebaseStorageClient,
    InMemoryStorageClient,
    StorageClient,
)
from donation_backend.store import (
    DirectoryStore,
    FirestoreDirectoryStore,
    InMemoryDirectoryStore,
    SqlDirectoryStore,
)

_directory_store: DirectoryStore | None = None
_push_channel: PushChannel | None = None
_identity_provider: IdentityProvider | None = None
_storage_client: StorageClient | None = None


def get_directory_store() -> DirectoryStore:
    """
    Return a singleton store so in-memory state persists across requests.
    """
    global _directory_store
    if _directory_store:
        return _directory_store

    settings = get_settings()
    if settings.use_in_memory_backends:
        _directory_store = InMemoryDirectoryStore()
    elif settings.use_firestore:
        app = get_firebase_app(settings)
        _directory_store = FirestoreDirectoryStore(firestore.client(app))
    elif settings.database_url:
        _directory_store = SqlDirectoryStore(settings.database_url)
    else:
        _directory_store = InMemoryDirectoryStore()
    return _directory_store


def get_push_channel() -> PushChannel:
    global _push_channel
    if _push_channel:
        return _push_channel

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.firebase_configured:
        _push_channel = InMemoryPushChannel()
    else:
        _push_channel = FcmPushChannel(app=get_firebase_app(settings))
    return _push_channel


def get_identity_provider() -> IdentityProvider:
    global _identity_provider
    if _identity_provider:
        return _identity_provider

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.firebase_configured:
        # Nothing verifies until tokens are registered on the provider.
        _identity_provider = StaticIdentityProvider()
    else:
        _identity_provider = FirebaseIdentityProvider(app=get_firebase_app(settings))
    return _identity_provider


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _storage_client = InMemoryStorageClient()
    elif settings.firebase_storage_bucket:
        _storage_client = FirebaseStorageClient(
            settings.firebase_storage_bucket, app=get_firebase_app(settings)
        )
    elif settings.cos_bucket:
        _storage_client = CosStorageClient(
            bucket=settings.cos_bucket,
            region=settings.cos_region or "",
            endpoint=settings.cos_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            url_expires_in=settings.image_url_expires_in,
        )
    else:
        _storage_client = InMemoryStorageClient()
    return _storage_client


def get_dispatcher(
    store: DirectoryStore = Depends(get_directory_store),
    push: PushChannel = Depends(get_push_channel),
    settings: Settings = Depends(get_settings),
) -> NotificationDispatcher:
    return NotificationDispatcher(
        store,
        push,
        push_timeout_seconds=settings.push_timeout_seconds,
        max_workers=settings.push_max_workers,
    )


def get_principal(
    authorization: Optional[str] = Header(default=None),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    store: DirectoryStore = Depends(get_directory_store),
) -> Principal:
    """
    Verifies the bearer credential, then resolves the caller's role once for
    the whole request.
    """
    identity = identity_provider.verify(parse_bearer(authorization))
    return resolve_principal(identity, store)
