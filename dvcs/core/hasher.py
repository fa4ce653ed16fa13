"""
dvcs.core.hasher — Turns raw bytes into a compressed payload and its digest.

The digest is taken over the *compressed* buffer, not the original bytes,
so two inputs only deduplicate when zlib produces byte-identical output.
"""

from __future__ import annotations

import hashlib
import logging
import zlib
from typing import BinaryIO

from dvcs.core.models import HashedContent

logger = logging.getLogger("dvcs.hasher")

CHUNK_SIZE = 64 * 1024


def hash_stream(stream: BinaryIO, level: int = zlib.Z_DEFAULT_COMPRESSION) -> HashedContent | None:
    """
    Compress *stream* with zlib and SHA-1 the compressed bytes.

    Returns ``None`` if the stream cannot be read.
    """
    compressor = zlib.compressobj(level)
    chunks: list[bytes] = []
    size = 0
    try:
        while True:
            block = stream.read(CHUNK_SIZE)
            if not block:
                break
            size += len(block)
            chunks.append(compressor.compress(block))
    except (OSError, ValueError) as exc:
        logger.warning("Could not read input stream: %s", exc)
        return None
    chunks.append(compressor.flush())

    content = b"".join(chunks)
    return HashedContent(
        hash=hashlib.sha1(content).hexdigest(),
        content=content,
        size=size,
    )


def inflate(content: bytes) -> bytes:
    """Reverse :func:`hash_stream`'s compression."""
    return zlib.decompress(content)
