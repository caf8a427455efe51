"""
Error taxonomy for quotation operations

Each error carries the HTTP status the API layer should answer with and a
structured ``details`` dict describing exactly what went wrong (which entity,
which item index, which constraint).
"""
from typing import Any, Dict, Optional


class QuotationServiceError(Exception):
    """Base exception for quotation backend operations"""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "error": self.error_code,
            "details": self.details,
        }


class NotFoundError(QuotationServiceError):
    """Referenced entity does not exist"""
    status_code = 404
    error_code = "NOT_FOUND"


class ValidationFailedError(QuotationServiceError):
    """Malformed or out-of-range input caught before persistence"""
    status_code = 422
    error_code = "VALIDATION_FAILED"


class ConflictError(QuotationServiceError):
    """Unique-constraint violation or delete blocked by dependents"""
    status_code = 409
    error_code = "CONFLICT"


class TooManyImagesError(QuotationServiceError):
    """An item carries more images than allowed"""
    status_code = 422
    error_code = "TOO_MANY_IMAGES"


class InvalidImageError(QuotationServiceError):
    """Upload is not an allow-listed image type"""
    status_code = 415
    error_code = "INVALID_IMAGE"


class ImageTooLargeError(QuotationServiceError):
    """Upload exceeds the configured size limit"""
    status_code = 413
    error_code = "IMAGE_TOO_LARGE"


class RenderFailedError(QuotationServiceError):
    """PDF rendering did not complete"""
    status_code = 500
    error_code = "RENDER_FAILED"


class StorageFailedError(QuotationServiceError):
    """Blob store put/get/delete failed"""
    status_code = 502
    error_code = "STORAGE_FAILED"


class AccessDeniedError(QuotationServiceError):
    """Access refused by a sharing or edit-window policy"""
    status_code = 403
    error_code = "ACCESS_DENIED"
