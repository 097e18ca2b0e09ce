"""
Lazy initialization of the firebase-admin app used by the Firebase-backed clients.
"""

from __future__ import annotations

import firebase_admin

from donation_backend.config import Settings


def get_firebase_app(settings: Settings) -> firebase_admin.App:
    """Return the default app, initializing it from settings on first use."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    options = {"httpTimeout": settings.push_timeout_seconds}
    if settings.firebase_project_id:
        options["projectId"] = settings.firebase_project_id
    if settings.firebase_storage_bucket:
        options["storageBucket"] = settings.firebase_storage_bucket
    # Application-default credentials (service account on Cloud Run/Functions).
    return firebase_admin.initialize_app(options=options)
