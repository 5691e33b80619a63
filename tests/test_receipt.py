import base64
import io
from datetime import datetime

import pytest
from escpos.constants import CD_KICK_2, CD_KICK_5, HW_INIT, PAPER_FULL_CUT
from PIL import Image

from printagent import receipt
from printagent.errors import PrintError


def pngBytes(image):
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def columnHeader(width):
    return bytes([0x1B, 0x2A, 33, width & 0xFF, width >> 8])


class TestCommands:
    @pytest.mark.parametrize("pin, expected", [
        (0, CD_KICK_2),
        (2, CD_KICK_2),
        (1, CD_KICK_5),
        (5, CD_KICK_5),
        (9, CD_KICK_2),
    ])
    def test_drawer_kick(self, pin, expected):
        assert receipt.drawer_kick(pin) == expected

    def test_cut_paper_ends_with_full_cut(self):
        assert receipt.cut_paper().endswith(PAPER_FULL_CUT)

    def test_text_job(self):
        data = receipt.text_job("Table 4: 2x Burger")
        assert data.startswith(HW_INIT)
        assert b"Table 4: 2x Burger" in data
        assert data.endswith(PAPER_FULL_CUT)

    def test_document_notice_reports_size(self):
        data = receipt.document_notice(2048)
        assert data.startswith(HW_INIT)
        assert b"PDF DOCUMENT" in data
        assert b"Size: 2048 bytes" in data
        assert data.endswith(PAPER_FULL_CUT)

    def test_diagnostic_page(self):
        data = receipt.diagnostic_page(datetime(2024, 12, 3, 12, 0, 0))
        assert data.startswith(HW_INIT)
        assert b"VOPECS PRINTER TEST" in data
        assert b"Date: 2024-12-03 12:00:00" in data
        assert b"TEST COMPLETE" in data
        assert PAPER_FULL_CUT not in data


class TestMonochrome:
    def test_hard_threshold_at_128(self):
        image = Image.new("L", (2, 1))
        image.putpixel((0, 0), 127)
        image.putpixel((1, 0), 128)

        result = receipt.monochrome(image)

        assert result.mode == "1"
        assert result.getpixel((0, 0)) == 0
        assert result.getpixel((1, 0)) == 255

    def test_wide_image_is_scaled_down(self):
        result = receipt.monochrome(Image.new("RGB", (1152, 48), color=(255, 255, 255)))
        assert result.size == (receipt.MAX_WIDTH_80MM, 24)

    def test_narrow_image_is_not_scaled_up(self):
        assert receipt.monochrome(Image.new("L", (100, 10))).size == (100, 10)


class TestImageJob:
    def test_column_strips_per_24_dots(self):
        data = receipt.image_job(Image.new("L", (16, 30), color=0))

        assert data.startswith(HW_INIT)
        assert data.count(columnHeader(16)) == 2

    def test_wide_image_header_uses_printer_width(self):
        data = receipt.image_job(Image.new("RGB", (1152, 48), color=(255, 255, 255)))
        assert columnHeader(receipt.MAX_WIDTH_80MM) in data

    def test_base64_with_data_url_prefix(self):
        encoded = base64.b64encode(pngBytes(Image.new("1", (8, 8), color=0))).decode("ascii")

        plain = receipt.base64_image_job(encoded)
        prefixed = receipt.base64_image_job("data:image/png;base64," + encoded)

        assert plain == prefixed

    def test_garbage_image_raises_print_error(self):
        with pytest.raises(PrintError):
            receipt.image_bytes_job(b"definitely not an image")
