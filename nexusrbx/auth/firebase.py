"""Firebase Admin initialization and ID token verification."""

import json

import firebase_admin
from firebase_admin import auth, credentials, exceptions
from firebase_admin import firestore as admin_firestore
from google.cloud import firestore

from nexusrbx.config import Settings
from nexusrbx.models import TokenData


def initialize_firebase(settings: Settings) -> firebase_admin.App:
    """
    Initialize the default Firebase app once per process.

    Uses the service account JSON from settings when present, otherwise
    application default credentials.
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    if settings.firebase_service_account:
        info = json.loads(settings.firebase_service_account.get_secret_value())
        if info.get("private_key"):
            # Keys pasted into env vars often carry escaped newlines
            info["private_key"] = info["private_key"].replace("\\n", "\n")
        cred = credentials.Certificate(info)
    else:
        cred = credentials.ApplicationDefault()

    options = {"projectId": settings.firebase_project_id} if settings.firebase_project_id else None
    return firebase_admin.initialize_app(cred, options)


def firestore_client(app: firebase_admin.App | None = None) -> firestore.Client:
    """Firestore client bound to a Firebase app."""
    return admin_firestore.client(app)


def verify_id_token(token: str, app: firebase_admin.App | None = None) -> TokenData | None:
    """
    Verify a Firebase ID token.

    Args:
        token: ID token from the `Authorization: Bearer` header
        app: Firebase app, the default app when omitted

    Returns:
        TokenData if valid, None if invalid
    """
    try:
        claims = auth.verify_id_token(token, app=app)
    except (ValueError, exceptions.FirebaseError):
        return None

    uid = claims.get("uid") or claims.get("sub")
    if not uid:
        return None

    return TokenData(uid=uid, email=claims.get("email"))
