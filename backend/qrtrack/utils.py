from typing import Optional
from urllib.parse import quote


def tracking_url(base_url: str, qr_id: int, content: str) -> str:
    """URL encoded into a QR symbol; resolving it records a scan."""
    return f"{base_url.rstrip('/')}/api/qrcodes/{qr_id}/scan?content={quote(content, safe='')}"


def public_base_url(request, configured: Optional[str]) -> str:
    # Prefer an explicit public base (reverse proxies, custom domains)
    return configured or str(request.base_url)
