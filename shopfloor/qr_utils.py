"""QR labels for operator badges and work-order units.

Scanners on the machines read these codes and post their text to
``/api/tracking/scan``, so the payload is simply the operator id or the
``WO-...`` barcode id.
"""

import io
import os

import qrcode


def ensure_dir(path: str) -> str:
    os.makedirs(path, exist_ok=True)
    return path


def make_label_png(payload: str) -> bytes:
    img = qrcode.make(payload)
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()


def save_label(label_dir: str, payload: str, filename: str) -> str:
    """Write the QR for ``payload`` into ``label_dir`` and return its path."""
    ensure_dir(label_dir)
    fp = os.path.join(label_dir, filename)
    with open(fp, "wb") as fh:
        fh.write(make_label_png(payload))
    return fp
