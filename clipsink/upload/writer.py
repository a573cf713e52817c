"""Size-limited write-through of an upload stream."""
import logging
from typing import AsyncIterable, BinaryIO

from ..errors import SizeExceeded

logger = logging.getLogger(__name__)


async def write_bounded(
    stream: AsyncIterable[bytes],
    destination: BinaryIO,
    max_bytes: int,
) -> int:
    """Drain ``stream`` into ``destination``, refusing to pass ``max_bytes``.

    Each chunk is checked against the limit before it is written, and
    written before the next one is requested. On success the destination
    is flushed and rewound to offset 0, ready to be read back.

    Args:
        stream: Async iterable of byte chunks (consumed once).
        destination: Writable, seekable binary file object.
        max_bytes: Largest total size accepted.

    Returns:
        Total number of bytes written.

    Raises:
        SizeExceeded: When a chunk would take the total past ``max_bytes``.
            Chunks before it have already been written; the caller owns
            discarding the partial destination.
        OSError: On write, flush or seek failures.
    """
    total = 0
    async for chunk in stream:
        attempted = total + len(chunk)
        if attempted > max_bytes:
            logger.info("Upload rejected at %d bytes (limit %d)", attempted, max_bytes)
            raise SizeExceeded(attempted, max_bytes)
        destination.write(chunk)
        total = attempted

    destination.flush()
    destination.seek(0)
    return total
