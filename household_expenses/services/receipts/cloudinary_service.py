"""
Receipt Storage using Cloudinary

DESIGN DECISION: We use Cloudinary for receipt images because:
1. Reliable cloud infrastructure with stable public URLs
2. Simple API
3. Free tier sufficient for a household

This service handles:
1. Checking that the file is a real image of a supported format
2. Uploading it under a household-scoped, timestamp-qualified path
3. Reporting coarse progress to the caller (start and finish)
4. Returning the secure URL to store on the expense

A failed upload raises ReceiptUploadError. Whether that aborts anything
is the caller's decision; the expense service saves without a receipt.
"""

import time
from abc import ABC, abstractmethod
from io import BytesIO
from pathlib import PurePath
from typing import Callable, Optional

import cloudinary
import cloudinary.uploader
from PIL import Image, UnidentifiedImageError
from tenacity import retry, stop_after_attempt, wait_exponential

from household_expenses.config import get_settings


ProgressCallback = Callable[[float], None]

# Pillow format name -> file extensions we accept for it
_PIL_FORMAT_EXTENSIONS = {
    "JPEG": {"jpg", "jpeg"},
    "PNG": {"png"},
    "WEBP": {"webp"},
}


class ReceiptError(Exception):
    """Base exception for receipt handling errors."""
    pass


class InvalidReceiptError(ReceiptError):
    """File is too large, unreadable, or not a supported image."""
    pass


class ReceiptUploadError(ReceiptError):
    """Failed to upload the receipt."""
    pass


class ReceiptStorageInterface(ABC):
    """Object storage for receipt images."""

    @abstractmethod
    async def upload_receipt(
        self,
        household_id: str,
        filename: str,
        data: bytes,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Upload a receipt image.

        Args:
            household_id: Household the receipt belongs to (path scope)
            filename: Original file name
            data: Raw file bytes
            on_progress: Called with 0 once the file is validated and with
                100 once the URL is back. Progress is coarse: the SDK upload
                is a single blocking call with no intermediate callbacks

        Returns:
            URL of the stored receipt

        Raises:
            InvalidReceiptError: If the file is rejected before upload
            ReceiptUploadError: If the upload fails
        """
        pass


def receipt_path(household_id: str, filename: str, now_ms: Optional[int] = None) -> str:
    """
    Storage path for a receipt: `<household_id>/<epoch_ms>_<stem>`.

    The extension is dropped; Cloudinary tracks the format itself.
    """
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    stem = PurePath(filename).stem.replace(" ", "_") or "receipt"
    return f"{household_id}/{stamp}_{stem}"


class CloudinaryReceiptStorage(ReceiptStorageInterface):
    """
    Receipt storage backed by Cloudinary.

    Flow:
    1. Validate size, decodability and format with Pillow
    2. Upload to `<receipts_folder>/<household_id>/<epoch_ms>_<name>`
    3. Return the secure URL
    """

    def __init__(self):
        self._settings = get_settings().cloudinary
        self._app_settings = get_settings().app
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def validate_receipt(self, filename: str, data: bytes) -> str:
        """
        Check a receipt before uploading it.

        Returns the detected Pillow format name (e.g. "JPEG").

        Raises:
            InvalidReceiptError: With a message the member can act on
        """
        max_bytes = self._app_settings.max_receipt_size_bytes
        if not data:
            raise InvalidReceiptError("Receipt file is empty")
        if len(data) > max_bytes:
            raise InvalidReceiptError(
                f"Receipt is too large ({len(data) / 1024 / 1024:.1f} MB). "
                f"Maximum is {self._app_settings.max_receipt_size_mb} MB."
            )

        try:
            with Image.open(BytesIO(data)) as img:
                img.verify()
                detected = img.format
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise InvalidReceiptError(f"Receipt is not a readable image: {e}")

        allowed = set(self._app_settings.supported_formats_list)
        extensions = _PIL_FORMAT_EXTENSIONS.get(detected or "", set())
        if not extensions & allowed:
            raise InvalidReceiptError(
                f"Unsupported receipt format: {detected}. "
                f"Allowed: {', '.join(sorted(allowed))}"
            )

        return detected

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _upload(self, data: bytes, public_id: str) -> dict:
        return cloudinary.uploader.upload(
            data,
            public_id=public_id,
            folder=self._settings.receipts_folder,
            resource_type="image",
            overwrite=False,
        )

    async def upload_receipt(
        self,
        household_id: str,
        filename: str,
        data: bytes,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Validate and upload. Reports 0 and 100 only; see the interface."""
        self.validate_receipt(filename, data)
        self._configure()

        if on_progress:
            on_progress(0.0)

        public_id = receipt_path(household_id, filename)
        try:
            result = self._upload(data, public_id)
        except cloudinary.exceptions.Error as e:
            raise ReceiptUploadError(f"Cloudinary error: {e}")
        except Exception as e:
            raise ReceiptUploadError(f"Failed to upload receipt: {e}")

        url = result.get("secure_url", result.get("url", ""))
        if not url:
            raise ReceiptUploadError("No URL returned from Cloudinary")

        if on_progress:
            on_progress(100.0)

        return url
