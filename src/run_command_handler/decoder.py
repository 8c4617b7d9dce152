"""Decoding for base64 and base64+gzip script payloads."""

from __future__ import annotations

import base64
import binascii
import gzip
import zlib

from run_command_handler.errors import DecodeError, DecompressError

GZIP_MAGIC = b"\x1f\x8b"


def decode_script(blob: str) -> tuple[str, str]:
    """Decode an encoded script into text plus a diagnostic info string.

    The info string is ``<blob length>;<script byte length>;gzip=<0|1>`` and is
    meant for logs only.
    """

    compact = "".join(blob.split())
    try:
        decoded = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as error:
        raise DecodeError(f"Encoded script is not valid base64: {error}") from error

    is_gzip = decoded.startswith(GZIP_MAGIC)
    if is_gzip:
        try:
            decoded = gzip.decompress(decoded)
        except (OSError, EOFError, zlib.error) as error:
            raise DecompressError(f"Failed to decompress gzip script: {error}") from error

    try:
        text = decoded.decode("utf-8")
    except UnicodeDecodeError as error:
        raise DecodeError(f"Decoded script is not valid UTF-8: {error}") from error

    info = f"{len(blob)};{len(decoded)};gzip={int(is_gzip)}"
    return text, info
