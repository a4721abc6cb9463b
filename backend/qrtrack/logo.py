import base64
import binascii
from io import BytesIO
from PIL import Image, ImageOps, UnidentifiedImageError

LOGO_MAX_SIZE = (200, 200)


class LogoError(ValueError):
    """Uploaded logo could not be decoded as an image."""


def decode_data_url(data_url: str) -> bytes:
    # "data:image/png;base64,AAAA" -> raw bytes; a bare base64 string is accepted too
    payload = data_url
    if data_url.startswith("data:"):
        _, sep, payload = data_url.partition(",")
        if not sep:
            raise LogoError("Logo data URL has no payload")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise LogoError("Logo is not valid base64") from e


def process_logo(data_url: str) -> str:
    """
    Prepare a logo for compositing onto a QR code.
    Converts to grayscale, fits inside LOGO_MAX_SIZE without enlarging,
    stretches contrast, and returns a PNG data URL.
    """
    raw = decode_data_url(data_url)
    try:
        img = Image.open(BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise LogoError("Logo is not a readable image") from e

    img = img.convert("L")
    # thumbnail() only ever shrinks
    img.thumbnail(LOGO_MAX_SIZE)
    img = ImageOps.autocontrast(img)

    out = BytesIO()
    img.save(out, format="PNG")
    return "data:image/png;base64," + base64.b64encode(out.getvalue()).decode("ascii")
