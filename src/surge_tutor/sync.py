"""Best-effort push and pull of subject documents to the sync server."""
import logging
from typing import Optional

import requests

from surge_tutor.config import Settings

logger = logging.getLogger(__name__)


def _current_user(session: requests.Session, settings: Settings) -> Optional[dict]:
    resp = session.get(f"{settings.sync_url}/api/me", timeout=settings.sync_timeout)
    try:
        payload = resp.json()
    except ValueError:
        return None
    return payload.get("user") if isinstance(payload, dict) else None


def sync_subject_data_to_server(settings: Optional[Settings], slug: str, data: dict) -> bool:
    """PUT the document to the server when a user is signed in.

    Failures are logged and swallowed; the local copy is already saved.
    Returns True only when the server accepted the document.
    """
    if settings is None or not settings.sync_url:
        return False
    try:
        with requests.Session() as session:
            if not _current_user(session, settings):
                logger.debug("No signed-in user; skipping sync of %s", slug)
                return False
            resp = session.put(
                f"{settings.sync_url}/api/subject-data",
                json={"slug": slug, "data": data},
                timeout=settings.sync_timeout,
            )
            resp.raise_for_status()
            return True
    except requests.RequestException as e:
        logger.warning("Failed to sync subject data to server: %s", e)
        return False


def fetch_subject_data_from_server(settings: Optional[Settings], slug: str) -> Optional[dict]:
    if settings is None or not settings.sync_url:
        return None
    try:
        resp = requests.get(
            f"{settings.sync_url}/api/subject-data",
            params={"slug": slug},
            timeout=settings.sync_timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("Failed to fetch subject data for %s: %s", slug, e)
        return None
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return None
