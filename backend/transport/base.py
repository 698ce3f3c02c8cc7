"""
Transport abstraction: listen/accept/connect over a stream socket.

A Transport binds a listener under a service identity and connects to a
remote endpoint's service with the same identity. Both sides end up with a
Connection that wraps a connected socket. Every blocking call here
(accept, connect, read, write) must run on a worker thread.
"""

import logging
import socket
import threading
import uuid
from abc import ABC, abstractmethod

from discovery.models import RemoteEndpoint
from errors import StreamIOError

logger = logging.getLogger(__name__)

# Text of the StreamIOError raised when a read/write hits a locally closed socket
SOCKET_CLOSED_MESSAGE = "socket closed"


class Connection:
    """A connected, ordered, reliable byte stream between two endpoints.

    Wraps any socket-like object with ``recv``/``sendall``/``shutdown``/``close``
    (a stdlib socket or a PyBluez BluetoothSocket). ``close`` is idempotent
    and may be called from another thread to abort a blocked read.
    """

    def __init__(self, sock, peer_address: str = "") -> None:
        self._sock = sock
        self._peer_address = peer_address
        self._closed = False
        self._lock = threading.Lock()

    @property
    def peer_address(self) -> str:
        return self._peer_address

    @property
    def closed(self) -> bool:
        return self._closed

    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes. Returns b"" at end of stream."""
        try:
            return self._sock.recv(size)
        except OSError as e:
            raise self._stream_error(e) from e

    def write(self, data) -> None:
        """Write every byte of ``data``."""
        try:
            self._sock.sendall(data)
        except OSError as e:
            raise self._stream_error(e) from e

    def flush(self) -> None:
        # sendall hands bytes straight to the kernel; nothing is buffered here
        if self._closed:
            raise StreamIOError(SOCKET_CLOSED_MESSAGE)

    def close(self) -> None:
        """Release the socket. Safe to call repeatedly and from any thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected
        try:
            self._sock.close()
        except OSError as e:
            logger.debug(f"Error closing connection to {self._peer_address}: {e}")
        logger.debug(f"Connection closed: {self._peer_address}")

    def _stream_error(self, exc: OSError) -> StreamIOError:
        if self._closed:
            return StreamIOError(SOCKET_CLOSED_MESSAGE)
        return StreamIOError(str(exc) or exc.__class__.__name__)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Connection {self._peer_address} {state}>"


class Listener(ABC):
    """A bound service record waiting for one incoming connection."""

    def __init__(self, service_identity: uuid.UUID) -> None:
        self.service_identity = service_identity

    @abstractmethod
    def accept(self, timeout: float | None = None) -> Connection:
        """Block until a peer connects. Raises TransportError if closed."""

    @abstractmethod
    def close(self) -> None:
        """Unregister the service and wake a blocked accept. Idempotent."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...


class Transport(ABC):
    """A discoverable short-range radio offering stream sockets."""

    @abstractmethod
    def radio_enabled(self) -> bool:
        """Whether the local radio is present and powered."""

    @abstractmethod
    def listen(self, service_identity: uuid.UUID) -> Listener:
        """Register a service record. Raises RadioUnavailable."""

    def accept(self, listener: Listener, timeout: float | None = None) -> Connection:
        """Block until a peer connects to ``listener``. Raises TransportError."""
        return listener.accept(timeout=timeout)

    @abstractmethod
    def connect(
        self, endpoint: RemoteEndpoint, service_identity: uuid.UUID
    ) -> Connection:
        """Connect to ``endpoint``'s service. Raises TransportError, never retries."""
