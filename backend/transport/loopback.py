"""
In-process simulated radio.

A LoopbackAir is the shared medium; each peer owns a LoopbackRadio with
its own address. Connections are socket.socketpair() ends, so reads and
writes behave like a real connected stream socket (blocking, ordered,
end-of-stream on close).
"""

import logging
import queue
import socket
import threading
import uuid

from discovery.models import RemoteEndpoint
from errors import RadioUnavailable, TransportError
from transport.base import Connection, Listener, Transport

logger = logging.getLogger(__name__)

_CLOSED = object()


class LoopbackAir:
    """Registry of service records visible to every LoopbackRadio on it."""

    def __init__(self) -> None:
        self._services: dict[tuple[str, uuid.UUID], "LoopbackListener"] = {}
        self._lock = threading.Lock()

    def register(self, address: str, listener: "LoopbackListener") -> None:
        key = (address, listener.service_identity)
        with self._lock:
            if key in self._services:
                raise TransportError(
                    f"Service {listener.service_identity} already registered on {address}"
                )
            self._services[key] = listener

    def unregister(self, address: str, listener: "LoopbackListener") -> None:
        key = (address, listener.service_identity)
        with self._lock:
            if self._services.get(key) is listener:
                del self._services[key]

    def lookup(self, address: str, service_identity: uuid.UUID) -> "LoopbackListener | None":
        with self._lock:
            return self._services.get((address, service_identity))


class LoopbackListener(Listener):
    """Service record on a LoopbackRadio; hands out queued connections."""

    def __init__(self, radio: "LoopbackRadio", service_identity: uuid.UUID) -> None:
        super().__init__(service_identity)
        self._radio = radio
        self._pending: queue.Queue = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, connection: Connection) -> None:
        """Queue an incoming connection for accept()."""
        with self._lock:
            if self._closed:
                raise TransportError("Listener closed")
            self._pending.put(connection)

    def accept(self, timeout: float | None = None) -> Connection:
        try:
            item = self._pending.get(timeout=timeout)
        except queue.Empty:
            raise TransportError(f"No connection within {timeout}s")

        if item is _CLOSED:
            # Leave the marker for any later accept() call
            self._pending.put(_CLOSED)
            raise TransportError("Listener closed")
        return item

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._radio.air.unregister(self._radio.address, self)

        # Drop connections nobody accepted; their peers see end of stream
        while True:
            try:
                item = self._pending.get_nowait()
            except queue.Empty:
                break
            if item is not _CLOSED:
                item.close()
        self._pending.put(_CLOSED)
        logger.debug(f"Loopback listener {self.service_identity} closed")


class LoopbackRadio(Transport):
    """A simulated local adapter with a fixed address."""

    def __init__(
        self, air: LoopbackAir, address: str, name: str = "", powered: bool = True
    ) -> None:
        self.air = air
        self.address = address
        self.name = name or address
        self.powered = powered

    @property
    def endpoint(self) -> RemoteEndpoint:
        """How other peers see this radio."""
        return RemoteEndpoint(name=self.name, address=self.address)

    def radio_enabled(self) -> bool:
        return self.powered

    def listen(self, service_identity: uuid.UUID) -> LoopbackListener:
        if not self.powered:
            raise RadioUnavailable(f"Radio {self.address} is powered off")

        listener = LoopbackListener(self, service_identity)
        self.air.register(self.address, listener)
        logger.info(f"Listening for service {service_identity} on {self.address}")
        return listener

    def connect(
        self, endpoint: RemoteEndpoint, service_identity: uuid.UUID
    ) -> Connection:
        if not self.powered:
            raise TransportError(f"Radio {self.address} is powered off")

        listener = self.air.lookup(endpoint.address, service_identity)
        if listener is None:
            raise TransportError(
                f"Service {service_identity} not found on {endpoint}"
            )

        ours, theirs = socket.socketpair()
        try:
            listener.offer(Connection(theirs, self.address))
        except TransportError:
            ours.close()
            theirs.close()
            raise

        logger.info(f"Connected to {endpoint}")
        return Connection(ours, endpoint.address)
