# app/core/firebase.py
"""
Firebase Admin SDK initialization.

The app is initialized on first use rather than at import time so that modules can be
imported (and tested) without credentials. `get_db()` returns the shared Firestore client.
"""
from typing import Optional

import firebase_admin
from firebase_admin import credentials, firestore

from neurohub.app.config import Settings, settings as default_settings

_firebase_app: Optional[firebase_admin.App] = None


def _build_credential(settings: Settings):
    # Check if we have environment variables for Firebase credentials (Cloud Run)
    if all([
        settings.firebase_private_key_id,
        settings.firebase_private_key,
        settings.firebase_client_email,
        settings.firebase_client_id,
        settings.firebase_auth_uri,
        settings.firebase_token_uri,
        settings.firebase_auth_provider_x509_cert_url,
        settings.firebase_client_x509_cert_url
    ]):
        cred_dict = {
            "type": "service_account",
            "project_id": settings.firebase_project_id,
            "private_key_id": settings.firebase_private_key_id,
            # env files usually carry the key with escaped newlines
            "private_key": settings.firebase_private_key.replace("\\n", "\n"),
            "client_email": settings.firebase_client_email,
            "client_id": settings.firebase_client_id,
            "auth_uri": settings.firebase_auth_uri,
            "token_uri": settings.firebase_token_uri,
            "auth_provider_x509_cert_url": settings.firebase_auth_provider_x509_cert_url,
            "client_x509_cert_url": settings.firebase_client_x509_cert_url
        }
        return credentials.Certificate(cred_dict)
    # Use service account file (local development)
    return credentials.Certificate(settings.firebase_cred_file)


def init_firebase(settings: Optional[Settings] = None) -> firebase_admin.App:
    """Initialize (once) and return the default Firebase app."""
    global _firebase_app
    if _firebase_app is not None:
        return _firebase_app
    settings = settings or default_settings
    try:
        options = {'projectId': settings.firebase_project_id} if settings.firebase_project_id else None
        _firebase_app = firebase_admin.initialize_app(_build_credential(settings), options)
    except ValueError as e:
        if "already exists" in str(e):
            # Firebase app already initialized, get the default app
            _firebase_app = firebase_admin.get_app()
        else:
            raise
    return _firebase_app


def get_db(settings: Optional[Settings] = None):
    """Firestore database client bound to the default app."""
    return firestore.client(init_firebase(settings))


def refresh_credentials() -> None:
    """Force a new OAuth access token for the service account credential."""
    app = init_firebase()
    app.credential.get_access_token()
