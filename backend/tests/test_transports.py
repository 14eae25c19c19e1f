"""
Unit tests for the Gmail and Drive transport clients.
httpx.AsyncClient is patched; no real API calls.
"""

import base64

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from mailsift.services.transports import (
    DriveFileClient,
    GmailAttachmentClient,
    TransportError,
    decode_base64url,
)


def _mock_async_client(response=None, side_effect=None) -> MagicMock:
    client = MagicMock()
    client.get = AsyncMock(return_value=response, side_effect=side_effect)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


def _response(json_body=None, content=b"", status_code=200) -> MagicMock:
    response = MagicMock()
    response.json.return_value = json_body or {}
    response.content = content
    if status_code >= 400:
        request = httpx.Request("GET", "https://example.test")
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            f"{status_code} error", request=request, response=httpx.Response(status_code, request=request)
        )
    return response


class TestDecodeBase64Url:

    def test_decodes_unpadded_urlsafe_data(self):
        raw = b"\xfb\xff\xfe image bytes"
        encoded = base64.urlsafe_b64encode(raw).decode().rstrip("=")
        assert decode_base64url(encoded) == raw


class TestGmailAttachmentClient:

    @pytest.mark.asyncio
    async def test_fetch_decodes_attachment_data(self):
        data = base64.urlsafe_b64encode(b"\x89PNG data").decode().rstrip("=")
        client = _mock_async_client(_response({"data": data, "size": 9}))

        with patch("mailsift.services.transports.httpx.AsyncClient", return_value=client):
            content = await GmailAttachmentClient("gmail-token").fetch("msg-1", "att-1")

        assert content == b"\x89PNG data"
        url = client.get.call_args.args[0]
        assert url.endswith("/messages/msg-1/attachments/att-1")
        assert client.get.call_args.kwargs["headers"] == {"Authorization": "Bearer gmail-token"}

    @pytest.mark.asyncio
    async def test_http_error_raises_transport_error(self):
        client = _mock_async_client(_response(status_code=404))

        with patch("mailsift.services.transports.httpx.AsyncClient", return_value=client):
            with pytest.raises(TransportError):
                await GmailAttachmentClient("gmail-token").fetch("msg-1", "att-1")

    @pytest.mark.asyncio
    async def test_network_error_raises_transport_error(self):
        client = _mock_async_client(side_effect=httpx.ConnectError("connection refused"))

        with patch("mailsift.services.transports.httpx.AsyncClient", return_value=client):
            with pytest.raises(TransportError):
                await GmailAttachmentClient("gmail-token").fetch("msg-1", "att-1")

    @pytest.mark.asyncio
    async def test_missing_data_raises_transport_error(self):
        client = _mock_async_client(_response({"size": 0}))

        with patch("mailsift.services.transports.httpx.AsyncClient", return_value=client):
            with pytest.raises(TransportError, match="no data"):
                await GmailAttachmentClient("gmail-token").fetch("msg-1", "att-1")


class TestDriveFileClient:

    @pytest.mark.asyncio
    async def test_get_metadata_parses_drive_fields(self):
        client = _mock_async_client(_response({
            "id": "ABC123",
            "name": "pic.jpg",
            "mimeType": "image/jpeg",
            "size": "5000",
        }))

        with patch("mailsift.services.transports.httpx.AsyncClient", return_value=client):
            metadata = await DriveFileClient("drive-token").get_metadata("ABC123")

        assert metadata.name == "pic.jpg"
        assert metadata.mime_type == "image/jpeg"
        assert metadata.size == 5000
        assert client.get.call_args.kwargs["params"]["fields"].startswith("id,name,mimeType,size")

    @pytest.mark.asyncio
    async def test_get_metadata_returns_none_when_inaccessible(self):
        client = _mock_async_client(_response(status_code=403))

        with patch("mailsift.services.transports.httpx.AsyncClient", return_value=client):
            assert await DriveFileClient("drive-token").get_metadata("PRIVATE") is None

    @pytest.mark.asyncio
    async def test_fetch_content_requests_media(self):
        client = _mock_async_client(_response(content=b"\xff\xd8 jpeg"))

        with patch("mailsift.services.transports.httpx.AsyncClient", return_value=client):
            content = await DriveFileClient("drive-token").fetch_content("ABC123")

        assert content == b"\xff\xd8 jpeg"
        assert client.get.call_args.kwargs["params"] == {"alt": "media"}

    @pytest.mark.asyncio
    async def test_fetch_content_failure_raises_transport_error(self):
        client = _mock_async_client(_response(status_code=500))

        with patch("mailsift.services.transports.httpx.AsyncClient", return_value=client):
            with pytest.raises(TransportError):
                await DriveFileClient("drive-token").fetch_content("ABC123")
