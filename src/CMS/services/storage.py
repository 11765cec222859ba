# src/CMS/services/storage.py
"""
Paper file storage: local disk or Cloudinary.

Cloudinary uploads use the signed REST upload endpoint directly over httpx
(``resource_type=raw``), so no vendor SDK is needed.
"""
from __future__ import annotations

import asyncio
import hashlib
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import httpx
from fastapi import UploadFile

from CMS.app_logger import get_logger
from CMS.core.errors import UpstreamError, ValidationError

log = get_logger("storage")

PDF_CONTENT_TYPES = {"application/pdf", "application/x-pdf"}
PDF_MAGIC = b"%PDF"


@dataclass(frozen=True)
class StoredFile:
    url: str
    public_id: str
    size: int


class StorageBackend(Protocol):
    kind: str
    max_bytes: int

    async def save(self, filename: str, content: bytes, content_type: Optional[str]) -> StoredFile:
        ...


def safe_filename(filename: str) -> str:
    stem = Path(filename or "paper").stem
    stem = re.sub(r"[^A-Za-z0-9._-]+", "_", stem).strip("._") or "paper"
    return stem[:80]


def _too_large(max_bytes: int) -> ValidationError:
    return ValidationError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB", field="file")


def validate_pdf(filename: str, content: bytes, content_type: Optional[str], max_bytes: int) -> None:
    if not content:
        raise ValidationError("Uploaded file is empty", field="file")
    if len(content) > max_bytes:
        raise _too_large(max_bytes)
    is_pdf_name = (filename or "").lower().endswith(".pdf")
    is_pdf_type = (content_type or "").split(";")[0].strip().lower() in PDF_CONTENT_TYPES
    if not (is_pdf_name or is_pdf_type) or not content.startswith(PDF_MAGIC):
        raise ValidationError("Only PDF files are allowed", field="file")


async def read_upload(upload: UploadFile, max_bytes: int) -> bytes:
    """Read an upload without buffering more than ``max_bytes + 1`` bytes."""
    content = await upload.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise _too_large(max_bytes)
    return content


class LocalStorage:
    kind = "local"

    def __init__(self, upload_dir: str | Path, base_url: str = "/uploads", max_bytes: int = 10 * 1024 * 1024):
        self.root = Path(upload_dir)
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def save(self, filename: str, content: bytes, content_type: Optional[str]) -> StoredFile:
        validate_pdf(filename, content, content_type, self.max_bytes)
        public_id = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{safe_filename(filename)}.pdf"
        await asyncio.to_thread(self._write, self.root / public_id, content)
        log.info("stored %s (%d bytes) on local disk", public_id, len(content))
        return StoredFile(url=f"{self.base_url}/{public_id}", public_id=public_id, size=len(content))


class CloudinaryStorage:
    kind = "cloudinary"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "cms/papers",
        max_bytes: int = 10 * 1024 * 1024,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.max_bytes = max_bytes
        self.timeout = timeout
        self._client = client

    @property
    def upload_url(self) -> str:
        return f"https://api.cloudinary.com/v1_1/{self.cloud_name}/raw/upload"

    def sign(self, params: dict) -> str:
        # sha1 over the sorted "k=v" pairs joined by "&", followed by the secret
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
        return hashlib.sha1((to_sign + self.api_secret).encode("utf-8")).hexdigest()

    async def save(self, filename: str, content: bytes, content_type: Optional[str]) -> StoredFile:
        validate_pdf(filename, content, content_type, self.max_bytes)
        params = {
            "folder": self.folder,
            "public_id": f"{uuid.uuid4().hex[:12]}-{safe_filename(filename)}",
            "timestamp": str(int(time.time())),
        }
        data = dict(params, api_key=self.api_key, signature=self.sign(params))
        files = {"file": (f"{safe_filename(filename)}.pdf", content, "application/pdf")}

        try:
            if self._client is not None:
                r = await self._client.post(self.upload_url, data=data, files=files)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    r = await client.post(self.upload_url, data=data, files=files)
            r.raise_for_status()
            body = r.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamError("cloudinary", detail=e.response.text[:500], message="File upload failed", cause=e) from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError("cloudinary", detail=e, message="File upload failed", cause=e) from e

        url = body.get("secure_url") or body.get("url")
        if not url:
            raise UpstreamError("cloudinary", detail=body, message="File upload failed")
        log.info("stored %s (%d bytes) on cloudinary", body.get("public_id"), len(content))
        return StoredFile(url=url, public_id=body.get("public_id") or params["public_id"],
                          size=int(body.get("bytes") or len(content)))


def build_storage(settings) -> StorageBackend:
    kind = (settings.STORAGE_BACKEND or "local").strip().lower()
    if kind == "cloudinary":
        if settings.CLOUDINARY_CLOUD_NAME and settings.CLOUDINARY_API_KEY and settings.CLOUDINARY_API_SECRET:
            return CloudinaryStorage(
                settings.CLOUDINARY_CLOUD_NAME,
                settings.CLOUDINARY_API_KEY,
                settings.CLOUDINARY_API_SECRET,
                folder=settings.CLOUDINARY_FOLDER,
                max_bytes=settings.max_upload_bytes,
            )
        log.warning("STORAGE_BACKEND=cloudinary but CLOUDINARY_* is incomplete; using local disk")
    elif kind != "local":
        log.warning("Unknown STORAGE_BACKEND=%r; using local disk", kind)
    return LocalStorage(settings.UPLOAD_DIR, max_bytes=settings.max_upload_bytes)


__all__ = [
    "StoredFile", "StorageBackend", "LocalStorage", "CloudinaryStorage", "build_storage", "read_upload", "validate_pdf",
]
