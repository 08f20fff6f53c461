import logging

import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud.firestore import Client as FirestoreClient

from lessonflow.config import Settings, get_settings

logger = logging.getLogger(__name__)


def _build_options(settings: Settings) -> dict[str, str]:
  return {"projectId": settings.firebase_project_id} if settings.firebase_project_id else {}


def initialize_firebase(settings: Settings | None = None) -> bool:
  """Initialize the Admin SDK once; returns False when it could not be initialized."""
  if firebase_admin._apps:
    return True

  settings = settings or get_settings()
  if not settings.firebase_project_id:
    logger.warning("LESSONFLOW_FIREBASE_PROJECT_ID is not set; Firestore progress storage is unavailable.")
    return False

  # Application Default Credentials apply when no service account file is configured.
  credential = credentials.Certificate(settings.firebase_service_account_json_path) if settings.firebase_service_account_json_path else None
  try:
    firebase_admin.initialize_app(credential, _build_options(settings))
  except (ValueError, OSError):
    logger.error("Failed to initialize Firebase Admin SDK for project %s.", settings.firebase_project_id, exc_info=True)
    return False
  logger.info("Firebase Admin SDK initialized for project %s.", settings.firebase_project_id)
  return True


def get_firestore_client() -> FirestoreClient | None:
  """Return the Firestore client for the default app, initializing lazily; None when unavailable."""
  if not firebase_admin._apps and not initialize_firebase():
    return None
  return firestore.client()
