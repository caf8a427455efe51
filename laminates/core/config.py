"""
Application settings loaded from the environment
"""
import os
from functools import lru_cache
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


class Settings:
    """
    Runtime configuration for the quotation backend

    Every value can be overridden through keyword arguments, which is how
    tests build isolated settings without touching the environment.
    """

    def __init__(self, **overrides):
        # Environment
        self.environment = os.getenv("ENVIRONMENT", "development").lower()
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.use_json_logging = _env_bool("USE_JSON_LOGGING", False)

        # Database
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./laminates.db")

        # Object storage
        self.aws_access_key_id: Optional[str] = os.getenv("AWS_ACCESS_KEY_ID")
        self.aws_secret_access_key: Optional[str] = os.getenv("AWS_SECRET_ACCESS_KEY")
        self.aws_region = os.getenv("AWS_REGION", "ap-south-1")
        self.aws_bucket_name = os.getenv("AWS_BUCKET_NAME", "laminates-quotations")

        # Auth
        self.jwt_secret = os.getenv("JWT_SECRET", "development-only-secret")
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")

        # Image pipeline
        self.image_max_file_size_bytes = _env_int("IMAGE_MAX_FILE_SIZE_BYTES", 5 * 1024 * 1024)
        self.max_images_per_item = _env_int("MAX_IMAGES_PER_ITEM", 10)
        self.image_compression_enabled = _env_bool("IMAGE_COMPRESSION_ENABLED", True)
        self.image_compression_quality = _env_int("IMAGE_COMPRESSION_QUALITY", 75)
        self.image_compression_min_bytes = _env_int("IMAGE_COMPRESSION_MIN_BYTES", 100 * 1024)
        self.image_preserve_dimensions = _env_bool("IMAGE_PRESERVE_DIMENSIONS", True)
        self.image_fallback_max_dimension = _env_int("IMAGE_FALLBACK_MAX_DIMENSION", 1200)

        # PDF rendering
        self.pdf_render_timeout_seconds = _env_float("PDF_RENDER_TIMEOUT_SECONDS", 60.0)
        self.image_fetch_timeout_seconds = _env_float("IMAGE_FETCH_TIMEOUT_SECONDS", 15.0)
        self.company_name = os.getenv("COMPANY_NAME", "MARUTI LAMINATES")
        self.company_tagline = os.getenv(
            "COMPANY_TAGLINE", "Professional Laminates & Interior Solutions"
        )
        self.company_contact = os.getenv(
            "COMPANY_CONTACT", "Phone: +91 1234567890 | Email: info@marutilaminates.com"
        )
        self.letterhead_image_path: Optional[str] = os.getenv("LETTERHEAD_IMAGE_PATH") or None

        # Public links
        self.public_access_expiry_months = _env_int("PUBLIC_ACCESS_EXPIRY_MONTHS", 3)

        # Edit window for non-admin roles
        self.edit_window_timezone = os.getenv("EDIT_WINDOW_TIMEZONE", "Asia/Kolkata")
        self.edit_window_start_hour = _env_int("EDIT_WINDOW_START_HOUR", 9)
        self.edit_window_end_hour = _env_int("EDIT_WINDOW_END_HOUR", 18)

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance"""
    return Settings()
