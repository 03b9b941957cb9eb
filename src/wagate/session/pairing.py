"""
Pairing artifact rendering.

Turns the raw pairing code pushed by the protocol into a PNG data URL that a
browser can show directly in an ``<img>`` tag.
"""

import asyncio
import base64
import io

import qrcode


def render_qr_png(code: str) -> bytes:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(code)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def to_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


async def render_pairing_artifact(code: str) -> str:
    """Render a pairing code to a PNG data URL off the event loop."""
    png = await asyncio.to_thread(render_qr_png, code)
    return to_data_url(png)
