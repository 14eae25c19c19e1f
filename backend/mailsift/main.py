"""
Mailsift Backend API
FastAPI application that extracts content images from email and filters out
logos, icons and tracking pixels.
"""

import logging
import os

from fastapi import FastAPI

from mailsift.routers import images

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Mailsift API",
    description="Email image extraction with content filtering",
    version="0.1.0",
)

app.include_router(images.router, prefix="/api/images", tags=["images"])


@app.get("/")
async def root():
    return {"message": "Mailsift API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/collaborators")
async def health_collaborators():
    """
    Report which external collaborators are configured.

    Only the attachment transport is required; a missing file store or
    vision provider degrades the pipeline rather than failing it.
    """
    vision_provider = os.getenv("VISION_PROVIDER", "google").lower().strip()
    vision_credential = {
        "google": "GOOGLE_VISION_ACCESS_TOKEN",
        "claude": "ANTHROPIC_API_KEY",
    }.get(vision_provider)

    return {
        "attachments": bool(os.getenv("GMAIL_ACCESS_TOKEN", "").strip()),
        "file_store": bool(os.getenv("DRIVE_ACCESS_TOKEN", "").strip()),
        "vision": {
            "provider": vision_provider,
            "configured": bool(vision_credential and os.getenv(vision_credential, "").strip()),
        },
    }
