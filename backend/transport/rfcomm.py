"""
Bluetooth RFCOMM transport built on PyBluez.

The listener binds any free RFCOMM channel and advertises an SDP service
record under the service identity; the connector looks the record up on
the remote device to find that channel.
"""

import logging
import socket
import uuid

import bluetooth

from config import APP_NAME
from discovery.bluez import adapter_powered
from discovery.models import RemoteEndpoint
from errors import RadioUnavailable, TransportError
from transport.base import Connection, Listener, Transport

logger = logging.getLogger(__name__)


class RfcommListener(Listener):
    """A bound RFCOMM server socket with an advertised service record."""

    def __init__(self, sock, service_identity: uuid.UUID) -> None:
        super().__init__(service_identity)
        self._sock = sock
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def channel(self) -> int:
        return self._sock.getsockname()[1]

    def accept(self, timeout: float | None = None) -> Connection:
        try:
            self._sock.settimeout(timeout)
            client_sock, client_info = self._sock.accept()
        except OSError as e:
            if self._closed:
                raise TransportError("Listener closed") from e
            raise TransportError(f"accept() failed: {e}") from e

        client_sock.settimeout(None)
        logger.info(f"Accepted RFCOMM connection from {client_info[0]}")
        return Connection(client_sock, client_info[0])

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        try:
            bluetooth.stop_advertising(self._sock)
        except bluetooth.BluetoothError as e:
            logger.debug(f"stop_advertising failed: {e}")
        # close() alone does not wake an accept() blocked in another thread
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except (bluetooth.BluetoothError, OSError):
            pass
        try:
            self._sock.close()
        except OSError as e:
            logger.error(f"Could not close the server socket: {e}")


class RfcommTransport(Transport):
    """Stream sockets over the local Bluetooth adapter."""

    def __init__(self, service_name: str = APP_NAME) -> None:
        self.service_name = service_name

    def radio_enabled(self) -> bool:
        return adapter_powered()

    def listen(self, service_identity: uuid.UUID) -> RfcommListener:
        try:
            sock = bluetooth.BluetoothSocket(bluetooth.RFCOMM)
        except (bluetooth.BluetoothError, OSError) as e:
            raise RadioUnavailable(f"No usable Bluetooth adapter: {e}") from e

        try:
            sock.bind(("", bluetooth.PORT_ANY))
            sock.listen(1)
            bluetooth.advertise_service(
                sock,
                self.service_name,
                service_id=str(service_identity),
                service_classes=[str(service_identity), bluetooth.SERIAL_PORT_CLASS],
                profiles=[bluetooth.SERIAL_PORT_PROFILE],
            )
        except (bluetooth.BluetoothError, OSError) as e:
            sock.close()
            raise RadioUnavailable(f"Could not register service {service_identity}: {e}") from e

        listener = RfcommListener(sock, service_identity)
        logger.info(
            f"Service {service_identity} advertised on RFCOMM channel {listener.channel}"
        )
        return listener

    def connect(
        self, endpoint: RemoteEndpoint, service_identity: uuid.UUID
    ) -> Connection:
        try:
            matches = bluetooth.find_service(
                uuid=str(service_identity), address=endpoint.address
            )
        except (bluetooth.BluetoothError, OSError) as e:
            raise TransportError(f"Service lookup on {endpoint} failed: {e}") from e

        if not matches:
            raise TransportError(f"Service {service_identity} not found on {endpoint}")

        channel = matches[0]["port"]
        try:
            sock = bluetooth.BluetoothSocket(bluetooth.RFCOMM)
        except (bluetooth.BluetoothError, OSError) as e:
            raise TransportError(f"No usable Bluetooth adapter: {e}") from e

        try:
            sock.connect((endpoint.address, channel))
        except (bluetooth.BluetoothError, OSError) as e:
            sock.close()
            raise TransportError(f"Could not connect to {endpoint}: {e}") from e

        logger.info(f"Connected to {endpoint} on RFCOMM channel {channel}")
        return Connection(sock, endpoint.address)
