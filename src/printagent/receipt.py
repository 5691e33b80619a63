"""Receipt byte builders on top of python-escpos.

Every builder renders into an ``escpos.printer.Dummy`` and returns its
buffered output; the bytes are spooled by :mod:`printagent.printer`.
"""

from __future__ import annotations

import base64
import binascii
import io
from datetime import datetime
from typing import Callable, Optional

import numpy as np
from escpos.exceptions import Error as EscposError
from escpos.printer import Dummy
from PIL import Image, UnidentifiedImageError

from .errors import PrintError

MAX_WIDTH_80MM = 576
THRESHOLD = 128

RULE = "=" * 32


def _render(build: Callable[[Dummy], None]) -> bytes:
    printer = Dummy()
    try:
        build(printer)
    except EscposError as error:
        raise PrintError(f"Failed to build ESC/POS data: {error}") from error
    return printer.output


def monochrome(image: Image.Image, max_width: int = MAX_WIDTH_80MM) -> Image.Image:
    """Scale down to ``max_width`` (never up) and threshold to black and white.

    A hard threshold keeps thin receipt text crisp; python-escpos would
    otherwise dither the grayscale image.
    """
    if image.width > max_width:
        ratio = max_width / float(image.width)
        image = image.resize((max_width, max(1, int(image.height * ratio))), Image.LANCZOS)
    gray = np.asarray(image.convert("L"), dtype=np.uint8)
    dark = gray < THRESHOLD
    return Image.fromarray(np.where(dark, 0, 255).astype(np.uint8)).convert("1")


def load_image(raw: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (UnidentifiedImageError, OSError) as error:
        raise PrintError(f"Failed to load image from memory: {error}") from error
    return image


def decode_base64_image(encoded: str) -> bytes:
    """Decode an inline image, dropping a ``data:...;base64,`` prefix."""
    if "," in encoded:
        encoded = encoded.split(",")[-1]
    try:
        return base64.b64decode(encoded.strip(), validate=False)
    except (binascii.Error, ValueError) as error:
        raise PrintError(f"Failed to decode base64 image: {error}") from error


def image_job(image: Image.Image, max_width: int = MAX_WIDTH_80MM) -> bytes:
    """24-dot double-density column image (``ESC *``), as thermal printers expect."""
    prepared = monochrome(image, max_width)

    def build(printer: Dummy) -> None:
        printer.hw("INIT")
        printer.image(
            prepared,
            impl="bitImageColumn",
            high_density_vertical=True,
            high_density_horizontal=True,
        )

    return _render(build)


def base64_image_job(encoded: str, max_width: int = MAX_WIDTH_80MM) -> bytes:
    return image_job(load_image(decode_base64_image(encoded)), max_width)


def image_bytes_job(raw: bytes, max_width: int = MAX_WIDTH_80MM) -> bytes:
    return image_job(load_image(raw), max_width)


def text_job(content: str) -> bytes:
    """Plain text job: initialise, content, feed and full cut."""
    def build(printer: Dummy) -> None:
        printer.hw("INIT")
        printer.text(content)
        printer.cut()

    return _render(build)


def document_notice(size: int) -> bytes:
    lines = [
        RULE,
        "       PDF DOCUMENT             ",
        RULE,
        f"Size: {size} bytes",
    ]
    return text_job("\n".join(lines) + "\n")


def drawer_kick(pin: int) -> bytes:
    """Kick pulse for the cash drawer.

    Pins 1 and 5 select connector pin 5; 0, 2 and anything else select pin 2.
    """
    connectorPin = 5 if pin in (1, 5) else 2
    return _render(lambda printer: printer.cashdraw(connectorPin))


def cut_paper() -> bytes:
    return _render(lambda printer: printer.cut())


def diagnostic_page(now: Optional[datetime] = None) -> bytes:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    bars = "|" * 32
    blank = " " * 32
    lines = [
        RULE,
        "      VOPECS PRINTER TEST       ",
        RULE,
        "",
        f"Date: {stamp}",
        "",
        "Test Line 1: ABCDEFGHIJKLMNOP",
        "Test Line 2: 1234567890",
        "Test Line 3: !@#$%^&*()",
        "",
        bars,
        blank,
        bars,
        blank,
        bars,
        "",
        RULE,
        "        TEST COMPLETE           ",
        RULE,
    ]

    def build(printer: Dummy) -> None:
        printer.hw("INIT")
        printer.text("\n".join(lines) + "\n\n\n\n")

    return _render(build)


__all__ = [
    "MAX_WIDTH_80MM",
    "base64_image_job",
    "cut_paper",
    "decode_base64_image",
    "diagnostic_page",
    "document_notice",
    "drawer_kick",
    "image_bytes_job",
    "image_job",
    "load_image",
    "monochrome",
    "text_job",
]
