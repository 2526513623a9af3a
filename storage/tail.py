"""Bounded-memory extraction of the newest lines of an append-only log."""

from __future__ import annotations

import os
from typing import List, Union

DEFAULT_BLOCK_SIZE = 32 * 1024

_NEWLINE = b"\n"

PathLike = Union[str, "os.PathLike[str]"]


def _decode(fragment: bytes) -> str:
    return fragment.rstrip(b"\r").decode("utf-8", errors="replace")


def read_last_lines(
    source: PathLike, limit: int, block_size: int = DEFAULT_BLOCK_SIZE
) -> List[str]:
    """Return up to ``limit`` most recent non-empty lines of ``source``, oldest first.

    The file is scanned backwards in ``block_size`` chunks; a line split across
    a block boundary is carried over until its start is found. Only the blocks
    needed to satisfy ``limit`` are read.
    """
    if block_size <= 0:
        raise ValueError("block_size must be positive.")
    if limit <= 0:
        return []

    lines: List[str] = []
    with open(source, "rb") as handle:
        position = handle.seek(0, os.SEEK_END)
        carry = b""
        while position > 0 and len(lines) < limit:
            start = max(0, position - block_size)
            handle.seek(start)
            block = handle.read(position - start)
            position = start

            end = len(block)
            index = block.rfind(_NEWLINE, 0, end)
            while index >= 0 and len(lines) < limit:
                fragment = block[index + 1:end] + carry
                carry = b""
                if fragment.rstrip(b"\r"):
                    lines.append(_decode(fragment))
                end = index
                index = block.rfind(_NEWLINE, 0, end)

            if len(lines) < limit:
                carry = block[:end] + carry

        # The first line of the file has no separator in front of it.
        if position == 0 and carry.rstrip(b"\r") and len(lines) < limit:
            lines.append(_decode(carry))

    lines.reverse()
    return lines
