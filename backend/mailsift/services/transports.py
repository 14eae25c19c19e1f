"""
Transport collaborators: attachment fetch and file-store access.

The pipeline depends only on the two Protocols below. The concrete clients
talk to the Gmail and Google Drive REST APIs with an OAuth access token.

Neither client sets a caller-side deadline beyond httpx's own transport
timeout, and nothing here retries: a failed call raises TransportError and
the caller decides what to skip.
"""

import base64
import binascii
import logging
from typing import Optional, Protocol

import httpx

from mailsift.models.images import DriveFileMetadata

logger = logging.getLogger(__name__)

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
DRIVE_API_BASE_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_METADATA_FIELDS = "id,name,mimeType,size,createdTime,modifiedTime"

# httpx default is 5s, too short for multi-MB media downloads
_HTTP_TIMEOUT = httpx.Timeout(60.0, connect=10.0)


class TransportError(Exception):
    """Raised when a collaborator call fails at the network or HTTP level."""


class AttachmentTransport(Protocol):
    async def fetch(self, message_id: str, attachment_id: str) -> bytes: ...


class FileStoreTransport(Protocol):
    async def get_metadata(self, file_id: str) -> Optional[DriveFileMetadata]: ...

    async def fetch_content(self, file_id: str) -> bytes: ...


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's base64url payloads, tolerating missing padding."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded)


class GmailAttachmentClient:
    """Fetches attachment bytes via users.messages.attachments.get."""

    def __init__(self, access_token: str, base_url: str = GMAIL_API_BASE_URL):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def fetch(self, message_id: str, attachment_id: str) -> bytes:
        url = f"{self.base_url}/messages/{message_id}/attachments/{attachment_id}"
        try:
            async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT) as client:
                response = await client.get(url, headers=self._headers())
                response.raise_for_status()
                data = response.json().get("data")
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to download Gmail attachment: {e}") from e

        if not data:
            raise TransportError("Gmail attachment response contained no data")
        try:
            return decode_base64url(data)
        except (binascii.Error, ValueError) as e:
            raise TransportError(f"Gmail attachment data is not valid base64: {e}") from e


class DriveFileClient:
    """Reads file metadata and content from Google Drive."""

    def __init__(self, access_token: str, base_url: str = DRIVE_API_BASE_URL):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def get_metadata(self, file_id: str) -> Optional[DriveFileMetadata]:
        """
        Return the file's metadata, or None if it cannot be accessed.

        Inaccessible files (not shared, deleted, bad id) are an expected
        outcome for links found in mail, so they are not errors.
        """
        try:
            async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT) as client:
                response = await client.get(
                    f"{self.base_url}/{file_id}",
                    headers=self._headers(),
                    params={"fields": DRIVE_METADATA_FIELDS},
                )
                response.raise_for_status()
                return DriveFileMetadata.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not access Drive file {file_id}: {e}")
            return None

    async def fetch_content(self, file_id: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT, follow_redirects=True) as client:
                response = await client.get(
                    f"{self.base_url}/{file_id}",
                    headers=self._headers(),
                    params={"alt": "media"},
                )
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to download Drive file: {e}") from e
