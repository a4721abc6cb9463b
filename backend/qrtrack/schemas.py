import re
from datetime import date, datetime
from typing import Dict, Optional
from urllib.parse import urlparse
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from .models import QRType

# Blocked URL schemes that could be used for phishing or attacks
BLOCKED_SCHEMES = {'javascript', 'data', 'vbscript', 'file'}

EMAIL_RE = re.compile(r"^(mailto:)?[^@\s]+@[^@\s]+\.[^@\s]+$", re.IGNORECASE)
PHONE_RE = re.compile(r"^(tel:)?\+?[0-9 ()./-]{3,32}$", re.IGNORECASE)


def validate_url_safety(url: str) -> str:
    """Validate that URL is safe (no javascript:, data:, etc.)"""
    url_lower = url.lower().strip()

    # Check for blocked schemes
    for scheme in BLOCKED_SCHEMES:
        if url_lower.startswith(f"{scheme}:"):
            raise ValueError(f"URL scheme '{scheme}:' is not allowed")

    parsed = urlparse(url)
    allowed_schemes = {'http', 'https', ''}
    if parsed.scheme.lower() not in allowed_schemes:
        raise ValueError(f"URL scheme '{parsed.scheme}' is not allowed. Use http or https.")
    return url


def validate_content_for_type(content: str, qr_type: QRType) -> str:
    """Check ``content`` is acceptable for a code of ``qr_type``."""
    if not content or not content.strip():
        raise ValueError("Content must not be empty")
    if qr_type == QRType.URL:
        return validate_url_safety(content)
    if qr_type == QRType.EMAIL and not EMAIL_RE.match(content.strip()):
        raise ValueError("Content is not an email address")
    if qr_type == QRType.PHONE and not PHONE_RE.match(content.strip()):
        raise ValueError("Content is not a phone number")
    return content


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1)


class UserOut(BaseModel):
    id: int
    username: str

    model_config = ConfigDict(from_attributes=True)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class FolderCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)


class FolderOut(BaseModel):
    id: int
    name: str
    owner_id: int

    model_config = ConfigDict(from_attributes=True)


class QRCreate(BaseModel):
    content: str
    type: QRType
    # image as a data URL, e.g. "data:image/png;base64,..."
    logo: Optional[str] = None
    folder_id: Optional[int] = None

    @model_validator(mode="after")
    def check_content(self):
        validate_content_for_type(self.content, self.type)
        return self


class QRUpdate(BaseModel):
    content: Optional[str] = None
    type: Optional[QRType] = None
    logo: Optional[str] = None
    folder_id: Optional[int] = None

    @field_validator("content")
    @classmethod
    def content_not_empty(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Content must not be empty")
        return v


class QROut(BaseModel):
    id: int
    content: str
    type: QRType
    logo: Optional[str] = None
    folder_id: Optional[int] = None
    owner_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    tracking_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ScanOut(BaseModel):
    id: int
    qr_id: int
    timestamp: datetime
    device: Optional[str] = None
    location: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ScanSummary(BaseModel):
    by_date: Dict[str, int] = Field(default_factory=dict)
    by_device: Dict[str, int] = Field(default_factory=dict)
    total: int = 0
    last_scan_date: Optional[date] = None
