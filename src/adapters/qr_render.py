"""QR code rendering for device pairing."""

from __future__ import annotations

import io

import qrcode


def print_qr(data: str) -> None:
    """Print the pairing QR to the terminal."""

    qr = qrcode.QRCode(border=1)
    qr.add_data(data)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


def render_qr_png(data: str, box_size: int = 8, border: int = 1) -> bytes:
    """Render the pairing QR as PNG bytes for the control surface."""

    qr = qrcode.QRCode(box_size=box_size, border=border)
    qr.add_data(data)
    qr.make(fit=True)
    image = qr.make_image()
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
