"""
Completion trailer for strict mode.

The connection closing is ambiguous: a sender that finished and a link
that broke look the same to the receiver. In strict mode the sender
appends a fixed-size trailer after the payload:

    +-----------+-------------------+-------------------------+
    | b"BBT1"   | length (8B, BE)   | SHA-256 of payload (32B)|
    +-----------+-------------------+-------------------------+

The receiver holds back the last TRAILER_SIZE bytes it has seen, so it
never writes trailer bytes into the destination, and verifies them once
the stream ends.
"""

import hmac
import struct

from cryptography.hazmat.primitives import hashes

from errors import TrailerMismatch

TRAILER_MAGIC = b"BBT1"
TRAILER_FORMAT = "!4sQ32s"
TRAILER_SIZE = struct.calcsize(TRAILER_FORMAT)


def new_digest() -> hashes.Hash:
    return hashes.Hash(hashes.SHA256())


def encode_trailer(length: int, digest: bytes) -> bytes:
    return struct.pack(TRAILER_FORMAT, TRAILER_MAGIC, length, digest)


def decode_trailer(data: bytes) -> tuple[int, bytes]:
    """Returns (length, digest). Raises TrailerMismatch if malformed."""
    if len(data) != TRAILER_SIZE:
        raise TrailerMismatch(
            f"Stream ended before the trailer ({len(data)} of {TRAILER_SIZE} bytes)"
        )
    magic, length, digest = struct.unpack(TRAILER_FORMAT, data)
    if magic != TRAILER_MAGIC:
        raise TrailerMismatch("Trailer magic not found; sender not in strict mode?")
    return length, digest


class TrailerWriter:
    """Sender side: digests the payload as it is written."""

    def __init__(self) -> None:
        self._digest = new_digest()
        self.length = 0

    def update(self, chunk) -> None:
        self._digest.update(bytes(chunk))
        self.length += len(chunk)

    def trailer(self) -> bytes:
        return encode_trailer(self.length, self._digest.finalize())


class TrailerStripper:
    """Receiver side: separates payload from the trailing trailer bytes."""

    def __init__(self) -> None:
        self._held = bytearray()
        self._digest = new_digest()
        self.length = 0

    def feed(self, chunk: bytes) -> bytes:
        """Returns the part of the stream now known to be payload."""
        self._held += chunk
        excess = len(self._held) - TRAILER_SIZE
        if excess <= 0:
            return b""

        payload = bytes(self._held[:excess])
        del self._held[:excess]
        self._digest.update(payload)
        self.length += len(payload)
        return payload

    def finish(self) -> None:
        """Verify the held-back trailer. Raises TrailerMismatch."""
        length, expected = decode_trailer(bytes(self._held))
        if length != self.length:
            raise TrailerMismatch(
                f"Length mismatch: trailer says {length} bytes, received {self.length}"
            )
        if not hmac.compare_digest(expected, self._digest.finalize()):
            raise TrailerMismatch("SHA-256 mismatch: payload corrupted in transit")
