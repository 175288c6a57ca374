"""Image rendering for identity matrices and share links."""
import io

import cv2
import numpy as np
import qrcode
from qrcode.image.pure import PyPNGImage

from healthpass.core.config import CODE_BORDER, CODE_BOX_SIZE
from healthpass.services.matrix import Matrix

DARK = 0
LIGHT = 255


def matrix_to_image(matrix: Matrix, box_size: int = CODE_BOX_SIZE, border: int = CODE_BORDER) -> np.ndarray:
    """Grayscale uint8 image: one box_size square per cell, border cells of quiet zone."""
    if box_size < 1 or border < 0:
        raise ValueError("box_size must be >= 1 and border >= 0")
    cells = np.where(matrix.to_array(), DARK, LIGHT).astype(np.uint8)
    cells = np.pad(cells, border, mode="constant", constant_values=LIGHT)
    return np.kron(cells, np.ones((box_size, box_size), dtype=np.uint8))


def matrix_to_png(matrix: Matrix, box_size: int = CODE_BOX_SIZE, border: int = CODE_BORDER) -> bytes:
    ok, buffer = cv2.imencode(".png", matrix_to_image(matrix, box_size, border))
    if not ok:
        raise RuntimeError("Could not encode identity matrix as PNG")
    return buffer.tobytes()


def matrix_to_text(matrix: Matrix, dark: str = "██", light: str = "  ") -> str:
    return "\n".join("".join(dark if v else light for v in row) for row in matrix.rows)


def reference_qr_png(url: str) -> bytes:
    """Scannable QR code (PNG bytes) pointing at a passport's reference URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=CODE_BOX_SIZE,
        border=CODE_BORDER,
    )
    qr.add_data(url)
    qr.make(fit=True)

    img = qr.make_image(image_factory=PyPNGImage)
    buffer = io.BytesIO()
    img.save(buffer)
    return buffer.getvalue()
