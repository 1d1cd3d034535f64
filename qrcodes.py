"""
═══════════════════════════════════════════════════════════
 CueBook — QR & Image Helpers
 QR encode (qrcode/Pillow), QR decode (OpenCV), data URLs
═══════════════════════════════════════════════════════════
"""

import base64
import binascii
import json
import logging
from io import BytesIO

import cv2
import numpy as np
import qrcode

log = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024


# ── QR generation ──
def make_qr_png(data, box_size=10, border=2):
    """Render `data` as a black-on-white QR code and return the PNG bytes."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def reservation_qr_payload(reservation_no, account_id):
    """Compact JSON the front desk scanner understands."""
    return json.dumps({"reservationNo": reservation_no, "accountId": account_id},
                      separators=(",", ":"))


def parse_scanned(text):
    """Scanned text → reservation number. JSON payloads carry `reservationNo`,
    anything else is taken as the number itself."""
    raw = (text or "").strip()
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(parsed, dict) and parsed.get("reservationNo"):
        return str(parsed["reservationNo"]).strip()
    return raw


# ── QR decoding (camera snapshot / uploaded image) ──
def decode_qr(image_bytes):
    """Return the text of the first QR code found in the image, or None."""
    if not image_bytes:
        return None
    arr = np.frombuffer(image_bytes, dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        log.warning("decode_qr: not a readable image (%d bytes)", len(image_bytes))
        return None
    detector = cv2.QRCodeDetector()
    text, points, _ = detector.detectAndDecode(img)
    if not text:
        return None
    return text


# ── Images ↔ data URLs ──
def validate_image(mime, size):
    """Uploaded proof / table photo / GCash QR check. Returns (ok, message)."""
    if not mime or not mime.startswith("image/"):
        return False, "Please upload an image file."
    if size > MAX_IMAGE_BYTES:
        return False, "Please upload an image smaller than 5MB."
    return True, ""


def to_data_url(content, mime="image/png"):
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


def from_data_url(url):
    """'data:image/png;base64,....' → (mime, bytes). Returns (None, None) when
    the value is not a base64 data URL (e.g. a storage public URL)."""
    if not url or not url.startswith("data:") or "," not in url:
        return None, None
    head, body = url.split(",", 1)
    mime = head[5:].split(";")[0] or "application/octet-stream"
    if ";base64" not in head:
        return None, None
    try:
        return mime, base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError):
        return None, None
