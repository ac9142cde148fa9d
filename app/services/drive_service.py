"""
Drive gateway: the Google Drive v3 calls the folder lifecycle needs.

Every call takes the caller's credential bundle explicitly; there is no shared
client object holding credentials between requests. HTTP failures are turned
into ExternalProviderError (ProviderAuthError for 401) so services never see
requests exceptions.
"""
import logging
from typing import Any

import requests

from config import DRIVE_REQUEST_TIMEOUT
from errors import ExternalProviderError, ProviderAuthError
from services.token_service import CredentialBundle

logger = logging.getLogger(__name__)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
FOLDER_MIME = "application/vnd.google-apps.folder"

# Folder permission level -> Drive role for an "anyone with the link" grant
PERMISSION_ROLES = {
    "view": "reader",
    "comment": "commenter",
    "edit": "writer",
}


def role_for_permission(level: str) -> str:
    """Map a permission level to a Drive role; unknown levels get reader."""
    return PERMISSION_ROLES.get(level, "reader")


def _drive_request(
    method: str,
    url: str,
    credentials: CredentialBundle,
    **kwargs: Any,
) -> dict | None:
    """Call Drive API with timeout; returns JSON. Raises ExternalProviderError on failure."""
    headers = {"Authorization": f"Bearer {credentials.access_token}"}
    if "headers" in kwargs:
        headers.update(kwargs.pop("headers"))
    kwargs.setdefault("timeout", DRIVE_REQUEST_TIMEOUT)
    try:
        resp = requests.request(method, url, headers=headers, **kwargs)
        resp.raise_for_status()
    except requests.exceptions.HTTPError as e:
        status = e.response.status_code if e.response is not None else None
        if status == 401:
            raise ProviderAuthError("Drive rejected the access token", status=status) from e
        raise ExternalProviderError(f"Drive request failed: {method} {url}", status=status) from e
    except requests.exceptions.RequestException as e:
        raise ExternalProviderError(f"Drive unreachable: {e}") from e
    if resp.content:
        return resp.json()
    return None


class DriveGateway:
    """Folder create / share / delete / existence checks against Google Drive."""

    def create_folder(self, name: str, credentials: CredentialBundle) -> dict:
        """Create a folder in the principal's Drive. Returns {id, name, link}."""
        data = _drive_request(
            "POST",
            DRIVE_FILES_URL,
            credentials,
            params={"fields": "id, name, webViewLink"},
            json={"name": name, "mimeType": FOLDER_MIME},
        ) or {}
        if not data.get("id"):
            raise ExternalProviderError("Drive did not return a folder id")
        logger.info("Created Drive folder %s (%s)", data["id"], name)
        return {
            "id": data["id"],
            "name": data.get("name", name),
            "link": data.get("webViewLink") or f"https://drive.google.com/drive/folders/{data['id']}",
        }

    def set_permission(self, folder_id: str, level: str, credentials: CredentialBundle) -> bool:
        """Grant anyone-with-the-link access at `level`. Raises on failure."""
        _drive_request(
            "POST",
            f"{DRIVE_FILES_URL}/{folder_id}/permissions",
            credentials,
            json={"type": "anyone", "role": role_for_permission(level)},
        )
        return True

    def delete_folder(self, folder_id: str, credentials: CredentialBundle) -> bool:
        """Delete a folder. A folder that is already gone counts as deleted."""
        try:
            _drive_request("DELETE", f"{DRIVE_FILES_URL}/{folder_id}", credentials)
        except ExternalProviderError as e:
            if e.status == 404:
                logger.info("Drive folder %s already deleted", folder_id)
                return True
            raise
        return True

    def check_exists(self, folder_id: str, credentials: CredentialBundle) -> bool:
        """True if the folder exists and is not trashed; False on 404. Other errors raise."""
        try:
            data = _drive_request(
                "GET",
                f"{DRIVE_FILES_URL}/{folder_id}",
                credentials,
                params={"fields": "id, trashed"},
            )
        except ExternalProviderError as e:
            if e.status == 404:
                return False
            raise
        if not data:
            return False
        return not data.get("trashed", False)

    def get_details(self, folder_id: str, credentials: CredentialBundle) -> dict:
        return _drive_request(
            "GET",
            f"{DRIVE_FILES_URL}/{folder_id}",
            credentials,
            params={"fields": "id, name, webViewLink, createdTime, modifiedTime, trashed"},
        ) or {}
