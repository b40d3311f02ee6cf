from io import BytesIO

import segno


def render_qr_png(content: str, *, scale: int = 10, border: int = 2, error: str = "m") -> bytes:
    """Render ``content`` as a QR code PNG.

    Args:
        content: Text to encode (the tracking address).
        scale: Pixels per module.
        border: Quiet zone width in modules.
        error: Error correction level (``l``, ``m``, ``q``, ``h``).

    Returns:
        bytes: PNG image data.

    Raises:
        ValueError: If content is empty or does not fit in a QR code.
    """
    if not content:
        raise ValueError("QR content must not be empty")

    try:
        qr = segno.make(content, error=error, micro=False)
    except segno.DataOverflowError as exc:
        raise ValueError("QR content is too long to encode") from exc

    buffer = BytesIO()
    qr.save(buffer, kind="png", scale=scale, border=border)
    return buffer.getvalue()
