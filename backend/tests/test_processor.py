"""
End-to-end tests for ImageProcessor.

Every collaborator (attachment transport, Drive file store, vision provider)
is mocked. Temp files are written under tmp_path.
"""

import base64

import pytest
from unittest.mock import AsyncMock, Mock, patch

from mailsift.config import FilteringStrength, PipelineConfig
from mailsift.models.email import EmailMessage
from mailsift.models.images import DriveFileMetadata, VisionAnalysis, VisionAnnotation
from mailsift.services.processor import (
    ConfigurationError,
    ImageProcessingError,
    ImageProcessor,
    build_no_images_result,
    build_success_result,
)
from mailsift.services.sender import resolve_sender


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def _b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode()


def _make_email(parts: list | None = None, subject: str | None = "Holiday photos") -> EmailMessage:
    data = {
        "id": "msg-123",
        "from": "Jane Doe <jane@example.com>",
        "payload": {"mimeType": "multipart/mixed", "parts": parts or []},
    }
    if subject is not None:
        data["subject"] = subject
    return EmailMessage.model_validate(data)


def _png_attachment(size: int = 2000, filename: str = "beach.png") -> dict:
    return {
        "mimeType": "image/png",
        "filename": filename,
        "body": {"attachmentId": "att-1", "size": size},
    }


def _attachments(content: bytes = b"\x89PNG" + b"\x00" * 2000) -> Mock:
    transport = Mock()
    transport.fetch = AsyncMock(return_value=content)
    return transport


def _processor(tmp_path, attachments=None, file_store=None, vision=None, **config) -> ImageProcessor:
    return ImageProcessor(
        PipelineConfig(temp_dir=str(tmp_path), **config),
        attachments=attachments or _attachments(),
        file_store=file_store,
        vision=vision,
    )


class TestScenarios:

    @pytest.mark.asyncio
    async def test_no_parts_no_text_is_skipped(self, tmp_path):
        email = EmailMessage.model_validate({"id": "msg-empty", "payload": {}})
        processor = _processor(tmp_path)

        result = await processor.process(email)

        assert result.skipped is True
        assert result.reason == "No images found"
        assert result.images == []
        assert result.email_id == "msg-empty"
        processor.pipeline.attachments.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_png_attachment_without_classification(self, tmp_path):
        processor = _processor(tmp_path)

        result = await processor.process(_make_email([_png_attachment()]))

        assert result.skipped is False
        assert result.total_images == 1
        assert result.images[0].filename == "beach.png"
        assert result.images[0].extracted_at is not None
        assert result.vision_filtering is None
        assert result.subject == "Holiday photos"
        assert result.sender_info.email == "jane@example.com"

    @pytest.mark.asyncio
    async def test_oversized_attachment_is_never_downloaded(self, tmp_path):
        processor = _processor(tmp_path)

        result = await processor.process(_make_email([_png_attachment(size=30 * 1024 * 1024)]))

        assert result.images == []
        assert result.total_images == 0
        processor.pipeline.attachments.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_drive_link_is_detected_and_kept(self, tmp_path):
        text = {
            "mimeType": "text/plain",
            "body": {"data": _b64url("Pics here: https://drive.google.com/open?id=ABC123 enjoy")},
        }
        file_store = Mock()
        file_store.get_metadata = AsyncMock(
            return_value=DriveFileMetadata(name="pic.jpg", mimeType="image/jpeg", size="5000")
        )
        file_store.fetch_content = AsyncMock(return_value=b"\xff\xd8" + b"\x00" * 5000)
        processor = _processor(tmp_path, file_store=file_store)

        result = await processor.process(_make_email([text]))

        assert len(result.images) == 1
        image = result.images[0]
        assert image.type == "drive_link"
        assert image.file_id == "ABC123"
        assert image.filename == "pic.jpg"
        assert image.size == 5000
        file_store.get_metadata.assert_awaited_once_with("ABC123")

    @pytest.mark.asyncio
    async def test_logo_label_discarded_under_balanced(self, tmp_path):
        vision = Mock()
        vision.analyze = AsyncMock(return_value=VisionAnalysis(
            labels=[VisionAnnotation(description="logo", score=0.75)]
        ))
        processor = _processor(
            tmp_path,
            vision=vision,
            enable_vision_filtering=True,
            filtering_strength=FilteringStrength.BALANCED,
        )

        result = await processor.process(_make_email([_png_attachment()]))

        assert result.images == []
        assert result.total_images == 0
        assert result.vision_filtering.enabled is True
        assert result.vision_filtering.strength == "balanced"
        assert result.vision_filtering.skip_tiny_images is True
        assert list(tmp_path.iterdir()) == []
        vision.analyze.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_vision_failure_keeps_image(self, tmp_path):
        vision = Mock()
        vision.analyze = AsyncMock(side_effect=RuntimeError("quota exceeded"))
        processor = _processor(tmp_path, vision=vision, enable_vision_filtering=True)

        result = await processor.process(_make_email([_png_attachment()]))

        assert result.total_images == 1


class TestProcessorErrors:

    @pytest.mark.asyncio
    async def test_missing_email_raises_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            await _processor(tmp_path).process(None)

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_wrapped_and_raised(self, tmp_path):
        processor = _processor(tmp_path)
        with patch(
            "mailsift.services.processor.detect_all_images",
            new_callable=AsyncMock,
            side_effect=RuntimeError("parser exploded"),
        ):
            with pytest.raises(ImageProcessingError) as exc_info:
                await processor.process(_make_email([_png_attachment()]))

        assert "Image processing failed: parser exploded" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_attachment_fetch_failure_does_not_fail_run(self, tmp_path):
        attachments = Mock()
        attachments.fetch = AsyncMock(side_effect=Exception("503 from Gmail"))
        processor = _processor(tmp_path, attachments=attachments)

        result = await processor.process(_make_email([_png_attachment()]))

        assert result.images == []
        assert result.skipped is False


class TestResultBuilders:

    def test_no_images_result(self):
        email = _make_email()
        result = build_no_images_result(email, resolve_sender(email))
        assert result.skipped is True
        assert result.reason == "No images found"
        assert result.subject is None
        assert result.processed_at is None

    def test_success_result_defaults_subject(self):
        email = _make_email(subject=None)
        result = build_success_result(email, resolve_sender(email), [], PipelineConfig())
        assert result.subject == "No Subject"
        assert result.total_images == 0
        assert result.processed_at is not None
        assert result.vision_filtering is None

    def test_success_result_records_filtering_policy(self):
        email = _make_email()
        config = PipelineConfig(
            enable_vision_filtering=True,
            filtering_strength=FilteringStrength.AGGRESSIVE,
            skip_tiny_images=False,
        )
        result = build_success_result(email, resolve_sender(email), [], config)
        assert result.vision_filtering.strength == "aggressive"
        assert result.vision_filtering.skip_tiny_images is False
