"""Pydantic models for file transfer."""

from enum import Enum

from pydantic import BaseModel


class TransferStatus(str, Enum):
    """Lifecycle of a single transfer session."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TransferRole(str, Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


class CompletionMode(str, Enum):
    """How the receiver decides a transfer is complete."""
    LEGACY = "legacy"  # connection close is end of file; "socket closed" errors count as done
    STRICT = "strict"  # payload is followed by a length + SHA-256 trailer


class Completion(str, Enum):
    """The signal that ended a successful transfer."""
    END_OF_STREAM = "end_of_stream"
    PEER_CLOSED = "peer_closed"
    TRAILER_VERIFIED = "trailer_verified"


class TransferOutcome(BaseModel):
    """Terminal result of one send or receive."""
    role: TransferRole
    status: TransferStatus
    bytes_transferred: int = 0
    saved_location: str | None = None  # receiver only
    error_detail: str | None = None
    completion: Completion | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == TransferStatus.SUCCEEDED


class TransferSession(BaseModel):
    """State of the one active transfer, exposed to the presentation layer."""
    session_id: str
    role: TransferRole
    status: TransferStatus = TransferStatus.PENDING
    peer_name: str = ""
    file_name: str = ""
    bytes_transferred: int = 0
    speed_bps: float = 0.0
    saved_location: str | None = None
    error_message: str | None = None
