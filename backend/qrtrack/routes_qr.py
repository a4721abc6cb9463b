import logging
from io import BytesIO
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from segno import make as make_qr
from starlette.responses import StreamingResponse
from . import schemas, models
from .analytics import summarize
from .auth import get_current_user, require_owner
from .config import get_settings
from .logo import LogoError, process_logo
from .storage import Storage, get_storage
from .utils import public_base_url, tracking_url

router = APIRouter(prefix="/api/qrcodes", tags=["qrcodes"])
logger = logging.getLogger(__name__)


def _qr_out(qr: models.QRCode, request: Request) -> schemas.QROut:
    out = schemas.QROut.model_validate(qr)
    base = public_base_url(request, get_settings().public_base_url)
    out.tracking_url = tracking_url(base, qr.id, qr.content)
    return out


def _owned_qrcode(qrcode_id: int, user: models.User, storage: Storage) -> models.QRCode:
    return require_owner(storage.get_qrcode(qrcode_id), user, "QRCode")


def _check_folder(folder_id: Optional[int], user: models.User, storage: Storage):
    if folder_id is not None:
        require_owner(storage.get_folder(folder_id), user, "Folder")


def _process_logo(logo: Optional[str]) -> Optional[str]:
    if not logo:
        return None
    try:
        return process_logo(logo)
    except LogoError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/", response_model=schemas.QROut)
def create_qr(
    data: schemas.QRCreate,
    request: Request,
    user: models.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    _check_folder(data.folder_id, user, storage)
    qr = storage.create_qrcode(
        content=data.content,
        type=data.type,
        owner_id=user.id,
        logo=_process_logo(data.logo),
        folder_id=data.folder_id,
    )
    logger.info("User %s created QR %s (%s)", user.id, qr.id, qr.type.value)
    return _qr_out(qr, request)


@router.get("/", response_model=List[schemas.QROut])
def list_qrcodes(
    request: Request,
    folder_id: Optional[int] = Query(None),
    user: models.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """List the caller's QR codes, optionally only those filed in ``folder_id``."""
    return [_qr_out(qr, request) for qr in storage.list_qrcodes(user.id, folder_id=folder_id)]


@router.get("/{qrcode_id}", response_model=schemas.QROut)
def get_qr(
    qrcode_id: int,
    request: Request,
    user: models.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return _qr_out(_owned_qrcode(qrcode_id, user, storage), request)


@router.patch("/{qrcode_id}", response_model=schemas.QROut)
def update_qr(
    qrcode_id: int,
    data: schemas.QRUpdate,
    request: Request,
    user: models.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """Partial update. Moving a code between folders is ``{"folder_id": n}``; ``null`` unfiles it."""
    q = _owned_qrcode(qrcode_id, user, storage)
    fields = data.model_dump(exclude_unset=True)
    # content and type cannot be cleared
    for key in ("content", "type"):
        if key in fields and fields[key] is None:
            del fields[key]

    if "folder_id" in fields:
        _check_folder(fields["folder_id"], user, storage)
    if "content" in fields or "type" in fields:
        try:
            schemas.validate_content_for_type(fields.get("content", q.content), fields.get("type", q.type))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    if "logo" in fields:
        fields["logo"] = _process_logo(fields["logo"])

    q = storage.update_qrcode(q.id, fields)
    if q is None:
        raise HTTPException(status_code=404, detail="QRCode not found")
    return _qr_out(q, request)


@router.delete("/{qrcode_id}")
def delete_qr(
    qrcode_id: int,
    user: models.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """Delete a QR code. Its scan history is retained."""
    q = _owned_qrcode(qrcode_id, user, storage)
    storage.delete_qrcode(q.id)
    logger.info("User %s deleted QR %s", user.id, q.id)
    return {"message": "QR code deleted successfully"}


@router.get("/{qrcode_id}/image")
def get_image(
    qrcode_id: int,
    request: Request,
    format: str = Query("png"),
    size: int = Query(300, ge=50, le=2000),
    user: models.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    q = _owned_qrcode(qrcode_id, user, storage)
    base = public_base_url(request, get_settings().public_base_url)
    # A logo covers modules; high error correction keeps the symbol readable
    qr = make_qr(tracking_url(base, q.id, q.content), error="h" if q.logo else "m")
    if format == "svg":
        svg_io = BytesIO()
        qr.save(svg_io, kind="svg")
        svg_io.seek(0)
        return Response(content=svg_io.read(), media_type="image/svg+xml")
    else:
        png_io = BytesIO()
        # Compute a reasonable scale so the generated PNG is roughly `size` pixels
        modules_x, modules_y = qr.symbol_size()
        scale = max(1, int(size // max(modules_x, modules_y)))
        qr.save(png_io, kind="png", scale=scale)
        png_io.seek(0)
        return StreamingResponse(png_io, media_type="image/png")


@router.get("/{qrcode_id}/scans", response_model=List[schemas.ScanOut])
def list_scans(
    qrcode_id: int,
    user: models.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    """Raw scan history of an owned code, oldest first."""
    q = _owned_qrcode(qrcode_id, user, storage)
    return storage.list_scans(q.id)


@router.get("/{qrcode_id}/analytics", response_model=schemas.ScanSummary)
def qrcode_analytics(
    qrcode_id: int,
    tz: Optional[str] = Query(None, description="IANA zone used for day buckets, UTC by default"),
    user: models.User = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    q = _owned_qrcode(qrcode_id, user, storage)
    zone = None
    if tz:
        try:
            zone = ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            raise HTTPException(status_code=400, detail=f"Unknown time zone: {tz}")
    return summarize(storage.list_scans(q.id), tz=zone)
