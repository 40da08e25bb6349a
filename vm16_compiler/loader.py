"""
Program image loading.

A program image is a raw file of little-endian 16-bit words: no header,
no length prefix, no checksum. Addresses are word offsets.
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Tuple, Union
import logging
import struct

from .isa import MAX_WORD, TranslationError

__all__ = [
    'MalformedImageError', 'words_from_bytes', 'words_to_bytes', 'load_image',
    'apply_patches', 'parse_patch', 'patch_table',
]

logger = logging.getLogger(__name__)


class MalformedImageError(TranslationError):
    """Raised when the image cannot be decoded as a word stream."""


def words_from_bytes(data: bytes, *, strict: bool = True) -> List[int]:
    """Reinterpret raw bytes as little-endian 16-bit words.

    An odd byte count is malformed. With ``strict=False`` the trailing
    byte is dropped instead.
    """
    if len(data) % 2:
        if strict:
            raise MalformedImageError(f"odd image length ({len(data)} bytes)")
        logger.warning("Ignoring trailing byte of %d-byte image", len(data))
    count = len(data) // 2
    return list(struct.unpack_from(f"<{count}H", data))


def words_to_bytes(words: Iterable[int]) -> bytes:
    """Pack words back into the little-endian image format."""
    words = list(words)
    for addr, w in enumerate(words):
        if not 0 <= w <= MAX_WORD:
            raise MalformedImageError(f"word value {w} does not fit in 16 bits", addr)
    return struct.pack(f"<{len(words)}H", *words)


def load_image(path: Union[str, Path], *, strict: bool = True) -> List[int]:
    """Read a program image file into a list of words."""
    data = Path(path).read_bytes()
    words = words_from_bytes(data, strict=strict)
    logger.info("Loaded %s: %d words", path, len(words))
    return words


def apply_patches(words: List[int], patches: Mapping[int, int]) -> List[int]:
    """Return a copy of ``words`` with caller-supplied overrides applied."""
    patched = list(words)
    for addr, value in sorted(patches.items()):
        if not 0 <= addr < len(patched):
            raise MalformedImageError(
                f"patch address outside image of {len(patched)} words", addr)
        if not 0 <= value <= MAX_WORD:
            raise MalformedImageError(f"patch value {value} does not fit in 16 bits", addr)
        logger.debug("Patch %d: %d -> %d", addr, patched[addr], value)
        patched[addr] = value
    return patched


def parse_patch(text: str) -> Tuple[int, int]:
    """Parse an ``ADDR=VALUE`` override (decimal or 0x hex on either side)."""
    if '=' not in text:
        raise ValueError(f"patch must look like ADDR=VALUE, got '{text}'")
    addr_text, value_text = text.split('=', 1)
    return int(addr_text.strip(), 0), int(value_text.strip(), 0)


def patch_table(entries: Iterable[str]) -> Dict[int, int]:
    """Build a patch table from several ``ADDR=VALUE`` strings."""
    table: Dict[int, int] = {}
    for entry in entries:
        addr, value = parse_patch(entry)
        table[addr] = value
    return table
