"""
Runtime configuration, read from the environment.
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_DATABASE_URL = 'sqlite:///acad_history.db'
DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_PDF_RENDER_SCALE = 2.0
MAX_CONTENT_LENGTH = 50 * 1024 * 1024  # 50MB max upload

# PDF points are 1/72 inch, so scale 1.0 renders at 72 dpi
PDF_BASE_DPI = 72
PREVIEW_JPEG_QUALITY = 80

ALLOWED_MIME_TYPES = {
    'image/jpeg', 'image/jpg', 'image/png', 'image/webp', 'application/pdf'
}


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    record_api_url: Optional[str] = None
    record_fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    pdf_render_scale: float = DEFAULT_PDF_RENDER_SCALE
    max_content_length: int = MAX_CONTENT_LENGTH
    log_level: str = 'INFO'

    def __post_init__(self):
        if self.pdf_render_scale < 2.0:
            raise ValueError(f"PDF_RENDER_SCALE must be at least 2.0, got {self.pdf_render_scale}")
        if self.record_fetch_timeout <= 0:
            raise ValueError("RECORD_FETCH_TIMEOUT must be positive")

    @classmethod
    def from_env(cls) -> 'Settings':
        """Load settings from environment variables"""
        return cls(
            database_url=os.getenv('DATABASE_URL', DEFAULT_DATABASE_URL),
            record_api_url=os.getenv('RECORD_API_URL') or None,
            record_fetch_timeout=float(os.getenv('RECORD_FETCH_TIMEOUT', DEFAULT_FETCH_TIMEOUT)),
            pdf_render_scale=float(os.getenv('PDF_RENDER_SCALE', DEFAULT_PDF_RENDER_SCALE)),
            max_content_length=int(os.getenv('MAX_CONTENT_LENGTH', MAX_CONTENT_LENGTH)),
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        )
