"""
PNG signature checks and dimension extraction.

Copyright 2025-2026, wr2conf authors
"""

from io import BytesIO
from pathlib import Path
from struct import unpack
from typing import BinaryIO, overload

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def is_png_data(data: bytes) -> bool:
    "True if the binary data starts with the 8-byte PNG signature."

    return len(data) >= len(PNG_SIGNATURE) and data[: len(PNG_SIGNATURE)] == PNG_SIGNATURE


def is_png_file(path: str | Path) -> bool:
    """
    True if the file exists and starts with the 8-byte PNG signature.

    Truncated, empty or unreadable files are reported as invalid rather than raising an exception.
    """

    try:
        with open(path, "rb") as f:
            return is_png_data(f.read(len(PNG_SIGNATURE)))
    except OSError:
        return False


def _read_chunk(f: BinaryIO) -> tuple[bytes, bytes] | None:
    "Reads a PNG chunk such as `IHDR` and returns its type and data."

    length_bytes = f.read(4)
    if not length_bytes:
        return None

    if len(length_bytes) != 4:
        raise ValueError("insufficient bytes to read chunk length")

    (length,) = unpack(">I", length_bytes)

    # chunk type, chunk data and CRC
    data_length = 4 + length + 4
    data_bytes = f.read(data_length)
    if len(data_bytes) != data_length:
        raise ValueError(f"insufficient bytes to read chunk data of length {length}")

    return data_bytes[0:4], data_bytes[4:-4]


def _extract_png_dimensions(source_file: BinaryIO) -> tuple[int, int]:
    if source_file.read(len(PNG_SIGNATURE)) != PNG_SIGNATURE:
        raise ValueError("not a valid PNG file")

    # the image header must be the first chunk
    chunk = _read_chunk(source_file)
    if chunk is None:
        raise ValueError("missing IHDR chunk")

    name, data = chunk
    if name != b"IHDR":
        raise ValueError(f"expected: IHDR chunk; got: {name!r}")
    if len(data) != 13:
        raise ValueError("invalid IHDR chunk length")

    width, height = unpack(">II", data[0:8])
    return width, height


@overload
def extract_png_dimensions(*, data: bytes) -> tuple[int, int]: ...


@overload
def extract_png_dimensions(*, path: str | Path) -> tuple[int, int]: ...


def extract_png_dimensions(*, data: bytes | None = None, path: str | Path | None = None) -> tuple[int, int]:
    """
    Returns the width and height of a PNG image inspecting its header.

    :param data: PNG image data.
    :param path: Path to the PNG image file.
    :returns: A tuple of the image's width and height in pixels.
    """

    if data is not None and path is not None:
        raise TypeError("expected: either `data` or `path`; got: both")
    elif data is not None:
        with BytesIO(data) as f:
            return _extract_png_dimensions(f)
    elif path is not None:
        with open(path, "rb") as f:
            return _extract_png_dimensions(f)
    else:
        raise TypeError("expected: either `data` or `path`; got: neither")
