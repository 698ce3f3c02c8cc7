"""
Streaming file transfer over an established connection.

The wire carries the file's bytes verbatim: no header, no length prefix,
no delimiter. The sender closing the connection is the only end-of-file
signal the receiver gets, so completion detection on the receiving side
depends on how the read loop ends:

- legacy mode: a clean end of stream is success, and so is a read
  failure whose text says the socket was closed. A link that drops
  mid-transfer with that text is therefore reported as success too.
- strict mode: the payload is followed by a length + SHA-256 trailer
  (see transfer.trailer); only a verified trailer is success.

Both functions block and must run on a worker thread. Neither raises for
I/O failures; they return a FAILED TransferOutcome instead. The
connection is closed exactly once on every path.
"""

import logging
import time
from typing import BinaryIO, Callable

from config import (
    PEER_CLOSED_MARKERS,
    PROGRESS_INTERVAL,
    RECEIVE_CHUNK_SIZE,
    SEND_CHUNK_SIZE,
)
from errors import DestinationUnavailable, StreamIOError
from transfer.models import (
    Completion,
    CompletionMode,
    TransferOutcome,
    TransferRole,
    TransferStatus,
)
from transfer.storage import Destination
from transfer.trailer import TrailerStripper, TrailerWriter
from transport.base import Connection

logger = logging.getLogger(__name__)

# fn(bytes_transferred, speed_bps), called from the worker thread
ProgressCallback = Callable[[int, float], None]


class SpeedTracker:
    """Rolling average speed calculator."""

    def __init__(self, window: float = 2.0):
        self._window = window
        self._samples: list[tuple[float, int]] = []

    def record(self, byte_count: int) -> None:
        now = time.monotonic()
        self._samples.append((now, byte_count))
        # Trim old samples
        cutoff = now - self._window
        self._samples = [(t, b) for t, b in self._samples if t >= cutoff]

    def get_speed(self) -> float:
        """Returns speed in bytes/sec."""
        if len(self._samples) < 2:
            return 0.0
        total_bytes = sum(b for _, b in self._samples[1:])
        elapsed = self._samples[-1][0] - self._samples[0][0]
        if elapsed <= 0:
            return 0.0
        return total_bytes / elapsed


class _ProgressReporter:
    """Rate-limits progress callbacks to one per PROGRESS_INTERVAL."""

    def __init__(self, callback: ProgressCallback | None):
        self._callback = callback
        self._tracker = SpeedTracker()
        self._last = time.monotonic()

    def record(self, total: int, count: int) -> None:
        if self._callback is None:
            return
        self._tracker.record(count)
        now = time.monotonic()
        if now - self._last >= PROGRESS_INTERVAL:
            self._callback(total, self._tracker.get_speed())
            self._last = now


def is_peer_closed(error: Exception, markers=PEER_CLOSED_MARKERS) -> bool:
    """Whether a read failure's text reads like a normal peer-initiated close."""
    text = str(error).lower()
    return any(marker.lower() in text for marker in markers)


def _close_source(source: BinaryIO) -> None:
    try:
        source.close()
    except OSError as e:
        logger.warning(f"Could not close the source stream: {e}")


def send_file(
    connection: Connection,
    source: BinaryIO,
    *,
    chunk_size: int = SEND_CHUNK_SIZE,
    mode: CompletionMode = CompletionMode.LEGACY,
    progress_callback: ProgressCallback | None = None,
) -> TransferOutcome:
    """
    Stream ``source`` to the peer, then close the connection.

    Args:
        connection: Connected socket; owned by this call from now on.
        source: Readable binary stream; closed when done.
        chunk_size: Bytes per read/write.
        mode: STRICT appends the completion trailer before closing.
        progress_callback: fn(bytes_transferred, speed_bps).
    """
    transferred = 0
    trailer = TrailerWriter() if mode == CompletionMode.STRICT else None
    progress = _ProgressReporter(progress_callback)
    buffer = bytearray(chunk_size)
    view = memoryview(buffer)

    try:
        while True:
            try:
                count = source.readinto(buffer)
            except OSError as e:
                raise StreamIOError(f"Reading source failed: {e}") from e
            if not count:
                break  # end of source is the only completion signal

            chunk = view[:count]
            connection.write(chunk)
            if trailer:
                trailer.update(chunk)
            transferred += count
            progress.record(transferred, count)

        if trailer:
            connection.write(trailer.trailer())
        connection.flush()

    except StreamIOError as e:
        logger.error(f"Send failed after {transferred} bytes: {e}")
        return TransferOutcome(
            role=TransferRole.SENDER,
            status=TransferStatus.FAILED,
            bytes_transferred=transferred,
            error_detail=str(e),
        )
    finally:
        _close_source(source)
        connection.close()

    logger.info(f"Sent {transferred} bytes to {connection.peer_address}")
    return TransferOutcome(
        role=TransferRole.SENDER,
        status=TransferStatus.SUCCEEDED,
        bytes_transferred=transferred,
        completion=Completion.END_OF_STREAM,
    )


def receive_file(
    connection: Connection,
    destination_factory: Callable[[], Destination],
    *,
    chunk_size: int = RECEIVE_CHUNK_SIZE,
    mode: CompletionMode = CompletionMode.LEGACY,
    peer_closed_markers=PEER_CLOSED_MARKERS,
    progress_callback: ProgressCallback | None = None,
) -> TransferOutcome:
    """
    Copy the peer's byte stream into a new destination until the stream ends.

    Args:
        connection: Connected socket; owned by this call from now on.
        destination_factory: fn() -> Destination, may raise DestinationUnavailable.
        chunk_size: Bytes per read.
        mode: How completion is decided (see module docstring).
        peer_closed_markers: Read-failure texts treated as a normal close (legacy only).
        progress_callback: fn(bytes_transferred, speed_bps).
    """
    try:
        destination = destination_factory()
    except DestinationUnavailable as e:
        logger.error(f"Receive aborted, no destination: {e}")
        connection.close()
        return TransferOutcome(
            role=TransferRole.RECEIVER,
            status=TransferStatus.FAILED,
            error_detail=str(e),
        )

    transferred = 0
    completion = None
    stripper = TrailerStripper() if mode == CompletionMode.STRICT else None
    progress = _ProgressReporter(progress_callback)

    try:
        try:
            while True:
                try:
                    chunk = connection.read(chunk_size)
                except StreamIOError as e:
                    if mode == CompletionMode.LEGACY and is_peer_closed(e, peer_closed_markers):
                        logger.info(f"Read ended with '{e}'; treating it as a normal close")
                        completion = Completion.PEER_CLOSED
                        break
                    raise

                if not chunk:
                    completion = Completion.END_OF_STREAM
                    break

                if stripper:
                    chunk = stripper.feed(chunk)
                    if not chunk:
                        continue
                try:
                    destination.write(chunk)
                except OSError as e:
                    raise StreamIOError(f"Writing {destination.location} failed: {e}") from e
                transferred += len(chunk)
                progress.record(transferred, len(chunk))

            if stripper:
                stripper.finish()
                completion = Completion.TRAILER_VERIFIED
        finally:
            try:
                destination.close()
            except OSError as e:
                raise StreamIOError(f"Closing {destination.location} failed: {e}") from e

    except StreamIOError as e:
        logger.error(
            f"Receive failed after {transferred} bytes "
            f"(partial data left in {destination.location}): {e}"
        )
        return TransferOutcome(
            role=TransferRole.RECEIVER,
            status=TransferStatus.FAILED,
            bytes_transferred=transferred,
            error_detail=str(e),
        )
    finally:
        connection.close()

    logger.info(
        f"Received {transferred} bytes from {connection.peer_address} "
        f"into {destination.location} ({completion.value})"
    )
    return TransferOutcome(
        role=TransferRole.RECEIVER,
        status=TransferStatus.SUCCEEDED,
        bytes_transferred=transferred,
        saved_location=destination.location,
        completion=completion,
    )
