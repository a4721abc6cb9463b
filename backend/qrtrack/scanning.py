"""Public scan endpoint: record a scan, then redirect to or show the content.

The tracking URL carries the content in its query string, so the response
only needs the registry for the existence check and the declared type.
"""
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple
from urllib.parse import urlparse
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.templating import Jinja2Templates
from starlette.responses import RedirectResponse
from . import models
from .analytics import UNKNOWN_DEVICE
from .storage import Storage, get_storage

router = APIRouter(prefix="/api/qrcodes", tags=["scan"])
logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=os.path.join(os.path.dirname(__file__), "templates"))

UNKNOWN_LOCATION = "Unknown Location"
MAX_ATTRIBUTION_LENGTH = 512


@dataclass
class ScanOutcome:
    qrcode: models.QRCode
    scan: models.Scan
    content: str
    # set when the scanner should be sent on rather than shown a page
    redirect_to: Optional[str] = None


def parse_id(raw: str) -> Optional[int]:
    try:
        value = int(raw)
    except ValueError:
        return None
    # outside the range of a 64-bit primary key: cannot exist
    return value if 0 < value < 2 ** 63 else None


def is_http_url(content: str) -> bool:
    parsed = urlparse(content)
    return parsed.scheme.lower() in ("http", "https") and bool(parsed.netloc)


def extract_attribution(headers: Mapping[str, str]) -> Tuple[str, str]:
    """Best-effort (device, location) from request headers. Client-controlled, never trusted."""
    device = (headers.get("user-agent") or "").strip() or UNKNOWN_DEVICE
    forwarded_for = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    location = f"IP: {forwarded_for}" if forwarded_for else UNKNOWN_LOCATION
    return device[:MAX_ATTRIBUTION_LENGTH], location[:MAX_ATTRIBUTION_LENGTH]


def resolve_scan(storage: Storage, qr_id: str, content: Optional[str], headers: Mapping[str, str]) -> ScanOutcome:
    parsed_id = parse_id(qr_id)
    qr = storage.get_qrcode(parsed_id) if parsed_id is not None else None
    if qr is None:
        raise HTTPException(status_code=404, detail="QRCode not found")

    # Rejected requests must not count as scans
    if not content or not content.strip():
        raise HTTPException(status_code=400, detail="Missing content")

    device, location = extract_attribution(headers)
    # StorageFailure propagates: no redirect without a recorded scan
    scan = storage.append_scan(qr.id, device, location)

    redirect_to = content if qr.type == models.QRType.URL and is_http_url(content) else None
    return ScanOutcome(qrcode=qr, scan=scan, content=content, redirect_to=redirect_to)


@router.get("/{qr_id}/scan")
def scan_qrcode(
    qr_id: str,
    request: Request,
    content: Optional[str] = Query(None),
    storage: Storage = Depends(get_storage),
):
    outcome = resolve_scan(storage, qr_id, content, request.headers)
    if outcome.redirect_to:
        logger.info("Scan %s of QR %s redirected", outcome.scan.id, outcome.qrcode.id)
        return RedirectResponse(url=outcome.redirect_to, status_code=302)
    logger.info("Scan %s of QR %s rendered inline", outcome.scan.id, outcome.qrcode.id)
    # autoescaped: content is untrusted
    return templates.TemplateResponse(request, "scan_content.html", {"content": outcome.content})
