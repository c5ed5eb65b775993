"""QR code generation and the handler serving a device access token as a QR image."""

from __future__ import annotations

import json
import logging
import re
import struct
import zlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from itertools import cycle, islice
from typing import Any, Callable

from werkzeug.wrappers import Request, Response

from .functions import Auth, sign_token

log = logging.getLogger(__name__)

SOFTWARE_NAME = "httpms"
QR_IMAGE_SIZE = 500
QUIET_ZONE = 4
TOKEN_DURATION = timedelta(days=6 * 31)

# Error correction level M for versions 1 to 40.
_ECC_PER_BLOCK = (
    10, 16, 26, 18, 24, 16, 18, 22, 22, 26, 30, 22, 22, 24, 24, 28, 28, 26, 26, 26,
    26, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28, 28,
)
_NUM_BLOCKS = (
    1, 1, 1, 2, 2, 4, 4, 4, 5, 5, 5, 8, 9, 9, 10, 10, 11, 13, 14, 16,
    17, 17, 18, 20, 21, 23, 25, 26, 28, 29, 31, 33, 35, 37, 38, 40, 43, 45, 47, 49,
)
_FORMAT_ECC_BITS = 0b00  # level M
_BYTE_MODE = 0b0100
_PAD_BYTES = (0xEC, 0x11)
# Width of the byte-mode character count: 8 bits below version 10, 16 from it on.
_SHORT_COUNT_BITS = 8
_LONG_COUNT_BITS = 16
_LONG_COUNT_FROM_VERSION = 10

_MASKS: tuple[Callable[[int, int], bool], ...] = (
    lambda x, y: (x + y) % 2 == 0,
    lambda x, y: y % 2 == 0,
    lambda x, y: x % 3 == 0,
    lambda x, y: (x + y) % 3 == 0,
    lambda x, y: (x // 3 + y // 2) % 2 == 0,
    lambda x, y: x * y % 2 + x * y % 3 == 0,
    lambda x, y: (x * y % 2 + x * y % 3) % 2 == 0,
    lambda x, y: ((x + y) % 2 + x * y % 3) % 2 == 0,
)

_RUN_RE = re.compile(r"0{5,}|1{5,}")
_FINDER_LIKE = ("10111010000", "00001011101")


def _raw_codewords(version: int) -> int:
    modules = (16 * version + 128) * version + 64
    if version >= 2:
        align = version // 7 + 2
        modules -= (25 * align - 10) * align - 55
        if version >= 7:
            modules -= 36
    return modules // 8


def _data_codewords(version: int) -> int:
    return _raw_codewords(version) - _ECC_PER_BLOCK[version - 1] * _NUM_BLOCKS[version - 1]


def _choose_version(length: int) -> int:
    for version in range(1, 41):
        count_bits = (
            _SHORT_COUNT_BITS if version < _LONG_COUNT_FROM_VERSION else _LONG_COUNT_BITS
        )
        if length >= 1 << count_bits:
            continue
        if 4 + count_bits + 8 * length <= _data_codewords(version) * 8:
            return version
    raise ValueError(f"data of {length} bytes is too long for a QR code")


def _alignment_positions(version: int) -> list[int]:
    if version == 1:
        return []
    count = version // 7 + 2
    step = (version * 8 + count * 3 + 5) // (count * 4 - 4) * 2
    last = version * 4 + 10
    return [6] + sorted(last - i * step for i in range(count - 1))


def _gf_mul(x: int, y: int) -> int:
    z = 0
    for i in reversed(range(8)):
        z = (z << 1) ^ ((z >> 7) * 0x11D)
        z ^= ((y >> i) & 1) * x
    return z


def _rs_divisor(degree: int) -> list[int]:
    result = [0] * (degree - 1) + [1]
    root = 1
    for _ in range(degree):
        for j in range(degree):
            result[j] = _gf_mul(result[j], root)
            if j + 1 < degree:
                result[j] ^= result[j + 1]
        root = _gf_mul(root, 0x02)
    return result


def _rs_remainder(data: list[int], divisor: list[int]) -> list[int]:
    result = [0] * len(divisor)
    for byte in data:
        factor = byte ^ result.pop(0)
        result.append(0)
        result = [r ^ _gf_mul(coef, factor) for r, coef in zip(result, divisor)]
    return result


def _encode_data(payload: bytes, version: int) -> list[int]:
    bits: list[int] = []

    def append(value: int, length: int) -> None:
        bits.extend((value >> i) & 1 for i in reversed(range(length)))

    count_bits = (
        _SHORT_COUNT_BITS if version < _LONG_COUNT_FROM_VERSION else _LONG_COUNT_BITS
    )
    append(_BYTE_MODE, 4)
    append(len(payload), count_bits)
    for byte in payload:
        append(byte, 8)

    capacity = _data_codewords(version) * 8
    append(0, min(4, capacity - len(bits)))
    append(0, -len(bits) % 8)

    codewords = [
        int("".join(map(str, bits[start:start + 8])), 2) for start in range(0, len(bits), 8)
    ]
    codewords.extend(islice(cycle(_PAD_BYTES), capacity // 8 - len(codewords)))
    return codewords


def _add_error_correction(data: list[int], version: int) -> list[int]:
    num_blocks = _NUM_BLOCKS[version - 1]
    ecc_len = _ECC_PER_BLOCK[version - 1]
    raw = _raw_codewords(version)
    num_short = num_blocks - raw % num_blocks
    short_len = raw // num_blocks
    divisor = _rs_divisor(ecc_len)

    data_blocks: list[list[int]] = []
    ecc_blocks: list[list[int]] = []
    rest = iter(data)
    for index in range(num_blocks):
        size = short_len - ecc_len + (0 if index < num_short else 1)
        block = list(islice(rest, size))
        data_blocks.append(block)
        ecc_blocks.append(_rs_remainder(block, divisor))

    result: list[int] = []
    longest = short_len - ecc_len + 1
    for position in range(longest):
        result.extend(block[position] for block in data_blocks if position < len(block))
    for position in range(ecc_len):
        result.extend(block[position] for block in ecc_blocks)
    return result


class _Grid:
    """Mutable module matrix with a record of which modules are function patterns."""

    def __init__(self, version: int) -> None:
        self.version = version
        self.size = version * 4 + 17
        self.modules = [[False] * self.size for _ in range(self.size)]
        self.reserved = [[False] * self.size for _ in range(self.size)]
        self._draw_function_patterns()

    def copy(self) -> _Grid:
        clone = object.__new__(_Grid)
        clone.version = self.version
        clone.size = self.size
        clone.modules = [list(row) for row in self.modules]
        clone.reserved = [list(row) for row in self.reserved]
        return clone

    def _set(self, x: int, y: int, dark: bool) -> None:
        self.modules[y][x] = dark
        self.reserved[y][x] = True

    def _draw_function_patterns(self) -> None:
        size = self.size
        for i in range(size):
            self._set(6, i, i % 2 == 0)
            self._set(i, 6, i % 2 == 0)

        for cx, cy in ((3, 3), (size - 4, 3), (3, size - 4)):
            self._draw_finder(cx, cy)

        positions = _alignment_positions(self.version)
        last = len(positions) - 1
        corners = {(0, 0), (0, last), (last, 0)}
        for i, cx in enumerate(positions):
            for j, cy in enumerate(positions):
                if (i, j) not in corners:
                    self._draw_alignment(cx, cy)

        self.draw_format(0)
        self._draw_version()

    def _draw_finder(self, cx: int, cy: int) -> None:
        for dy in range(-4, 5):
            for dx in range(-4, 5):
                x, y = cx + dx, cy + dy
                if 0 <= x < self.size and 0 <= y < self.size:
                    self._set(x, y, max(abs(dx), abs(dy)) not in (2, 4))

    def _draw_alignment(self, cx: int, cy: int) -> None:
        for dy in range(-2, 3):
            for dx in range(-2, 3):
                self._set(cx + dx, cy + dy, max(abs(dx), abs(dy)) != 1)

    def draw_format(self, mask: int) -> None:
        data = _FORMAT_ECC_BITS << 3 | mask
        rem = data
        for _ in range(10):
            rem = (rem << 1) ^ ((rem >> 9) * 0x537)
        bits = (data << 10 | rem) ^ 0x5412

        def bit(i: int) -> bool:
            return (bits >> i) & 1 == 1

        size = self.size
        for i in range(6):
            self._set(8, i, bit(i))
        self._set(8, 7, bit(6))
        self._set(8, 8, bit(7))
        self._set(7, 8, bit(8))
        for i in range(9, 15):
            self._set(14 - i, 8, bit(i))
        for i in range(8):
            self._set(size - 1 - i, 8, bit(i))
        for i in range(8, 15):
            self._set(8, size - 15 + i, bit(i))
        self._set(8, size - 8, True)

    def _draw_version(self) -> None:
        if self.version < 7:
            return
        rem = self.version
        for _ in range(12):
            rem = (rem << 1) ^ ((rem >> 11) * 0x1F25)
        bits = self.version << 12 | rem
        for i in range(18):
            dark = (bits >> i) & 1 == 1
            a, b = self.size - 11 + i % 3, i // 3
            self._set(a, b, dark)
            self._set(b, a, dark)

    def _data_positions(self):
        right = self.size - 1
        while right >= 1:
            if right == 6:
                right = 5
            upward = ((right + 1) & 2) == 0
            rows = range(self.size - 1, -1, -1) if upward else range(self.size)
            for y in rows:
                for x in (right, right - 1):
                    if not self.reserved[y][x]:
                        yield x, y
            right -= 2

    def place(self, codewords: list[int]) -> None:
        bits = iter([(cw >> (7 - k)) & 1 for cw in codewords for k in range(8)])
        for x, y in self._data_positions():
            self.modules[y][x] = next(bits, 0) == 1

    def apply_mask(self, mask: int) -> None:
        flip = _MASKS[mask]
        for y, (row, reserved) in enumerate(zip(self.modules, self.reserved)):
            for x, fixed in enumerate(reserved):
                if not fixed and flip(x, y):
                    row[x] = not row[x]


def _penalty(modules: list[list[bool]]) -> int:
    lines = ["".join("1" if dark else "0" for dark in row) for row in modules]
    lines += ["".join("1" if dark else "0" for dark in column) for column in zip(*modules)]

    score = 0
    for line in lines:
        score += sum(len(run.group()) - 2 for run in _RUN_RE.finditer(line))
        padded = "0000" + line + "0000"
        score += 40 * sum(padded.count(pattern) for pattern in _FINDER_LIKE)

    for top, bottom in zip(modules, modules[1:]):
        for a, b, c, d in zip(top, top[1:], bottom, bottom[1:]):
            if a == b == c == d:
                score += 3

    total = len(modules) ** 2
    dark = sum(map(sum, modules))
    score += 10 * (abs(dark * 100 // total - 50) // 5)
    return score


def _png_chunk(kind: bytes, body: bytes) -> bytes:
    return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body))


def _pack_bits(pixels: str) -> bytes:
    pixels += "0" * (-len(pixels) % 8)
    return int(pixels, 2).to_bytes(len(pixels) // 8, "big")


@dataclass(frozen=True)
class QRCode:
    """A QR code symbol in byte mode with medium error correction.

    ``modules`` holds the dark (True) and light modules row by row;
    ``reserved`` marks the modules which belong to function patterns.
    """

    version: int
    mask: int
    modules: tuple[tuple[bool, ...], ...]
    reserved: tuple[tuple[bool, ...], ...]

    @property
    def size(self) -> int:
        """Number of modules along one side."""
        return len(self.modules)

    @classmethod
    def encode(cls, data: str | bytes) -> QRCode:
        """Encode ``data`` in the smallest version able to hold it.

        Raises ValueError when the data does not fit in any version.
        """
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        version = _choose_version(len(payload))
        codewords = _add_error_correction(_encode_data(payload, version), version)

        base = _Grid(version)
        base.place(codewords)

        best: tuple[int, int, _Grid] | None = None
        for mask in range(len(_MASKS)):
            candidate = base.copy()
            candidate.apply_mask(mask)
            candidate.draw_format(mask)
            score = _penalty(candidate.modules)
            if best is None or score < best[0]:
                best = (score, mask, candidate)

        assert best is not None
        _, mask, grid = best
        return cls(
            version=version,
            mask=mask,
            modules=tuple(tuple(row) for row in grid.modules),
            reserved=tuple(tuple(row) for row in grid.reserved),
        )

    def to_png(self, size: int) -> bytes:
        """Render the code as a black and white PNG of ``size`` by ``size`` pixels."""
        count = self.size
        total = count + 2 * QUIET_ZONE
        scale = size // total
        if scale < 1:
            raise ValueError(f"image size {size} is too small for a {count}x{count} QR code")

        offset = (size - total * scale) // 2 + QUIET_ZONE * scale
        trailing = size - offset - count * scale
        blank = b"\x00" + _pack_bits("1" * size)

        lines = [blank] * offset
        for row in self.modules:
            pixels = (
                "1" * offset
                + "".join(("0" if dark else "1") * scale for dark in row)
                + "1" * trailing
            )
            lines.extend([b"\x00" + _pack_bits(pixels)] * scale)
        lines.extend([blank] * trailing)

        header = struct.pack(">IIBBBBB", size, size, 1, 0, 0, 0, 0)
        return (
            b"\x89PNG\r\n\x1a\n"
            + _png_chunk(b"IHDR", header)
            + _png_chunk(b"IDAT", zlib.compress(b"".join(lines), 9))
            + _png_chunk(b"IEND", b"")
        )


def _json_payload(value: dict[str, str]) -> str:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    for char, escaped in (
        ("<", "\\u003c"),
        (">", "\\u003e"),
        ("&", "\\u0026"),
        ("\u2028", "\\u2028"),
        ("\u2029", "\\u2029"),
    ):
        text = text.replace(char, escaped)
    return text


def _error(message: str) -> Response:
    return Response(message + "\n", status=500, mimetype="text/plain")


class CreateQRTokenHandler:
    """Serves a PNG QR code holding the server address and, if needed, an access token.

    The address is taken from the ``address`` query value.
    """

    def __init__(self, needs_auth: bool, auth: Auth) -> None:
        self.needs_auth = needs_auth
        self.auth = auth

    def __call__(self, request: Request, **kwargs: Any) -> Response:
        contents = {"software": SOFTWARE_NAME}

        if self.needs_auth:
            expires_at = datetime.now(timezone.utc) + TOKEN_DURATION
            try:
                token = sign_token(self.auth.secret, expires_at)
            except Exception as err:  # noqa: BLE001 - reported to the client
                return _error(f"Error generating token: {err}.")
            if token:
                contents["token"] = token

        contents["address"] = request.args.get("address", "")

        try:
            code = QRCode.encode(_json_payload(contents))
        except ValueError as err:
            return _error(f"Error creating QR token: {err}.")

        try:
            image = code.to_png(QR_IMAGE_SIZE)
        except ValueError as err:
            return _error(f"Error writing out qr token: {err}.")

        return Response(image, mimetype="image/png")