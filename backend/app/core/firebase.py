import json
import base64
import logging
from firebase_admin import credentials, initialize_app, get_app, firestore, storage
from app.core.config import settings

logger = logging.getLogger("paynow")

_db = None
_bucket = None


def init_firebase():
    try:
        get_app()
        logger.info("✅ Firebase Admin SDK already initialized")
        return
    except ValueError:
        pass

    options = {}
    if settings.FIREBASE_STORAGE_BUCKET:
        options["storageBucket"] = settings.FIREBASE_STORAGE_BUCKET

    if settings.PAYNOW_FIREBASE_KEY:
        try:
            decoded_json = base64.b64decode(settings.PAYNOW_FIREBASE_KEY).decode("utf-8")
            service_account_info = json.loads(decoded_json)
            logger.info("🔑 Loaded Firebase credentials from PAYNOW_FIREBASE_KEY")
        except Exception as e:
            raise RuntimeError(f"❌ Failed to decode or parse PAYNOW_FIREBASE_KEY: {e}")

        project_id = service_account_info.get("project_id")
        if not project_id:
            raise ValueError("❌ 'project_id' missing in Firebase service account JSON")

        options.setdefault("storageBucket", f"{project_id}.appspot.com")
        initialize_app(credentials.Certificate(service_account_info), options)
        logger.info(f"🔥 Firebase Admin SDK initialized | Project: {project_id}")
        return

    if settings.GOOGLE_APPLICATION_CREDENTIALS:
        initialize_app(credentials.Certificate(settings.GOOGLE_APPLICATION_CREDENTIALS), options)
        logger.info("🔥 Firebase Admin SDK initialized from GOOGLE_APPLICATION_CREDENTIALS")
        return

    raise RuntimeError("❌ Neither PAYNOW_FIREBASE_KEY nor GOOGLE_APPLICATION_CREDENTIALS is set")


def get_db():
    """Firestore client, initialized on first use."""
    global _db
    if _db is None:
        init_firebase()
        _db = firestore.client()
        logger.info("✅ Firestore client ready")
    return _db


def get_bucket():
    global _bucket
    if _bucket is None:
        init_firebase()
        _bucket = storage.bucket()
        logger.info(f"✅ Firebase Storage bucket ready: {_bucket.name}")
    return _bucket


__all__ = ["get_db", "get_bucket", "init_firebase"]
