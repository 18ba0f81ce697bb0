"""Line-oriented reading of subprocess output streams."""

import asyncio
import re
from collections.abc import AsyncIterator

# Tunnel programs that believe they have a terminal colour their banners.
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")


def clean_line(raw: bytes, encoding: str = "utf-8") -> str:
    """Decode a raw output line and drop escape sequences and line endings."""
    text = raw.decode(encoding, errors="replace")
    return _ANSI_ESCAPE.sub("", text).rstrip("\r\n")


async def iter_lines(
    stream: asyncio.StreamReader, encoding: str = "utf-8"
) -> AsyncIterator[str]:
    """Yield decoded lines until the process closes the stream.

    The iterator consumes the stream, so each process output can be read
    once; a new process gives a new stream.
    """
    while True:
        try:
            raw = await stream.readline()
        except ValueError:
            # The reader already discarded the overlong line.
            continue
        if not raw:
            return
        yield clean_line(raw, encoding)
