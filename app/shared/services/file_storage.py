# app/shared/services/file_storage.py
import logging
import os
import re
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

import cloudinary
import cloudinary.uploader
from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from app.core.exceptions import ExpenseValidationError, StorageUnavailable

logger = logging.getLogger(__name__)


class FileStorage(ABC):
    """Keeps receipt bytes and hands back a reference to store on the expense"""

    def __init__(self, allowed_formats: Iterable[str], max_size: int):
        self.allowed_formats = set(allowed_formats)
        self.max_size = max_size

    async def _read_validated(self, upload: UploadFile) -> bytes:
        if upload.content_type not in self.allowed_formats:
            raise ExpenseValidationError(
                f"Unsupported receipt type: {upload.content_type or 'unknown'}"
            )

        await upload.seek(0)
        content = await upload.read()

        if not content:
            raise ExpenseValidationError("Receipt file is empty")
        if len(content) > self.max_size:
            raise ExpenseValidationError(
                f"Receipt must not exceed {self.max_size // (1024 * 1024)}MB"
            )
        return content

    @staticmethod
    def _unique_name(original: Optional[str]) -> str:
        ext = os.path.splitext(original or "")[1].lower()
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"receipt_{timestamp}_{uuid.uuid4().hex[:8]}{ext}"

    @abstractmethod
    async def save(self, upload: UploadFile) -> str:
        ...

    @abstractmethod
    async def delete(self, reference: str) -> bool:
        ...


class LocalFileStorage(FileStorage):
    """Receipts on local disk; the reference is the bare filename served under /uploads"""

    def __init__(self, upload_dir: str, allowed_formats: Iterable[str], max_size: int):
        super().__init__(allowed_formats, max_size)
        self.upload_dir = upload_dir
        os.makedirs(upload_dir, exist_ok=True)

    def _path(self, reference: str) -> str:
        # never follow a client-supplied path outside the upload dir
        return os.path.join(self.upload_dir, os.path.basename(reference))

    @staticmethod
    def _write(path: str, content: bytes) -> None:
        with open(path, "wb") as f:
            f.write(content)

    async def save(self, upload: UploadFile) -> str:
        content = await self._read_validated(upload)
        filename = self._unique_name(upload.filename)
        await run_in_threadpool(self._write, self._path(filename), content)
        logger.info(f"📤 Receipt stored: {filename} ({len(content)} bytes)")
        return filename

    async def delete(self, reference: str) -> bool:
        path = self._path(reference)
        if not os.path.exists(path):
            return False
        os.remove(path)
        logger.info(f"🗑️ Receipt removed: {reference}")
        return True


class CloudinaryFileStorage(FileStorage):
    """Receipts on Cloudinary; the reference is the secure URL"""

    def __init__(
        self,
        cloud_name: Optional[str],
        api_key: Optional[str],
        api_secret: Optional[str],
        folder: str,
        allowed_formats: Iterable[str],
        max_size: int,
    ):
        super().__init__(allowed_formats, max_size)
        self.folder = folder
        self.configured = all([cloud_name, api_key, api_secret])

        if not self.configured:
            logger.warning("⚠️ Cloudinary is not fully configured")
            return

        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )
        logger.info("✅ Cloudinary configured")

    async def save(self, upload: UploadFile) -> str:
        if not self.configured:
            raise StorageUnavailable("Cloudinary is not configured")

        content = await self._read_validated(upload)
        public_id = os.path.splitext(self._unique_name(upload.filename))[0]

        try:
            result = await run_in_threadpool(
                cloudinary.uploader.upload,
                content,
                public_id=public_id,
                folder=f"{self.folder}/receipts",
                resource_type="auto",
                tags=["expense_receipt"],
                overwrite=False,
            )
        except Exception as e:
            logger.error(f"❌ Error uploading receipt to Cloudinary: {e}")
            raise StorageUnavailable(f"Error uploading receipt: {e}") from e

        if "secure_url" not in result:
            raise StorageUnavailable("Cloudinary did not return a receipt URL")

        logger.info(f"✅ Receipt uploaded: {result['secure_url']}")
        return result["secure_url"]

    async def delete(self, reference: str) -> bool:
        if not self.configured:
            return False

        public_id = self.extract_public_id(reference)
        if not public_id:
            logger.warning(f"⚠️ Could not extract public_id from URL: {reference}")
            return False

        result = await run_in_threadpool(cloudinary.uploader.destroy, public_id)
        return result.get("result") == "ok"

    @staticmethod
    def extract_public_id(url: str) -> Optional[str]:
        """
        https://res.cloudinary.com/<cloud>/<type>/upload/[transformations/]v<version>/<public_id>.<format>
        """
        if "cloudinary.com" not in url:
            return None

        parts = url.split("/")
        if "upload" not in parts:
            return None

        public_id_parts = []
        for part in parts[parts.index("upload") + 1:]:
            if re.fullmatch(r"v\d+", part) or re.match(r"^[a-z]{1,2}_", part):
                continue
            public_id_parts.append(part)

        if not public_id_parts:
            return None

        return os.path.splitext("/".join(public_id_parts))[0]
