"""
Image Resizer Errors

Every failure that can end a request carries the HTTP status it maps to.
The router turns these into HTTPException; nothing here is retried.
"""

from typing import Optional


class ImageCacheError(Exception):
    """Base class for request-terminating failures."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class UnknownTenant(ImageCacheError):
    """Inbound host is not in the tenant map."""
    status_code = 404


class UnsupportedMediaType(ImageCacheError):
    """Requested file is not an image, or is an icon."""
    status_code = 415


class WidthTooLarge(ImageCacheError):
    """Requested width is above the configured maximum."""
    status_code = 400


class OriginFetchFailed(ImageCacheError):
    """Origin pull failed. Carries the origin's status when it answered."""
    status_code = 500


class DecodeFailed(ImageCacheError):
    status_code = 500


class UnsupportedImageFormat(ImageCacheError):
    """Image type we cannot encode (anything but PNG, JPEG, GIF)."""
    status_code = 500


class EncodeFailed(ImageCacheError):
    status_code = 500


class FilesystemFailure(ImageCacheError):
    status_code = 500


class ConfigurationError(Exception):
    """Raised at startup when settings cannot be loaded or are invalid."""
