"""
flowengine/whatsapp/qr.py
─────────────────────────
Turns the raw pairing payload from the transport into something a browser
can show: a PNG data URL.
"""

from __future__ import annotations
import base64
import io

import qrcode


def render_qr_data_url(payload: str) -> str:
    image = qrcode.make(payload)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
