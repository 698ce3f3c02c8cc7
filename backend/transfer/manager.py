"""
Session Controller: orchestrates one file transfer at a time.

Either listens for a peer and receives one file, or connects to a
selected paired device and sends the selected file. The asyncio event
loop is the interactive context; every blocking step (listen, accept,
connect, streaming) runs on a worker thread via asyncio.to_thread and
reports back through the loop, never by touching session state directly.
"""

import asyncio
import logging
import threading
import uuid
from pathlib import Path

from config import (
    COMPLETION_MODE,
    RECEIVE_CHUNK_SIZE,
    RECEIVED_MIME_TYPE,
    SEND_CHUNK_SIZE,
    SERVICE_UUID,
)
from discovery.directory import DeviceDirectory
from discovery.models import RemoteEndpoint
from errors import (
    BlueBoothError,
    InvalidSelection,
    PermissionDenied,
    RadioUnavailable,
    SessionBusy,
    SourceUnavailable,
    TransportError,
)
from transfer.collaborators import (
    AllowAllGate,
    Capability,
    DeclineRadioPrompt,
    PermissionGate,
    RadioPrompt,
)
from transfer.models import (
    CompletionMode,
    TransferOutcome,
    TransferRole,
    TransferSession,
    TransferStatus,
)
from transfer.service import receive_file, send_file
from transfer.storage import DestinationProvider, SourceProvider, received_file_name
from transport.base import Transport

logger = logging.getLogger(__name__)


class _CancelScope:
    """The resource cancel() must close for one session.

    Each session gets its own scope, so a worker that outlives its session
    can never publish into, or be revived by, the next one.
    """

    def __init__(self) -> None:
        self.requested = threading.Event()
        self._closeable = None
        self._lock = threading.Lock()

    def attach(self, closeable) -> None:
        """Publish the listener or connection to close; honours an earlier cancel."""
        with self._lock:
            if not self.requested.is_set():
                self._closeable = closeable
                return
        closeable.close()
        raise TransportError("Session cancelled")

    def cancel(self) -> None:
        with self._lock:
            self.requested.set()
            closeable = self._closeable
        # Nothing attached yet: the worker closes it in attach()
        if closeable is not None:
            closeable.close()


def _completion_mode(value) -> CompletionMode:
    try:
        return CompletionMode(value)
    except ValueError:
        choices = ", ".join(m.value for m in CompletionMode)
        raise ValueError(
            f"Unknown completion mode {value!r} (BLUEBOOTH_COMPLETION_MODE); "
            f"expected one of: {choices}"
        ) from None


class SessionController:
    """Owns the single active TransferSession and the resources behind it."""

    def __init__(
        self,
        transport: Transport,
        directory: DeviceDirectory,
        source_provider: SourceProvider,
        destination_provider: DestinationProvider,
        permission_gate: PermissionGate | None = None,
        radio_prompt: RadioPrompt | None = None,
        *,
        service_identity: uuid.UUID = SERVICE_UUID,
        completion_mode: CompletionMode | str | None = None,
        send_chunk_size: int = SEND_CHUNK_SIZE,
        receive_chunk_size: int = RECEIVE_CHUNK_SIZE,
        accept_timeout: float | None = None,
    ) -> None:
        self._transport = transport
        self._directory = directory
        self._source_provider = source_provider
        self._destination_provider = destination_provider
        self._permission_gate = permission_gate or AllowAllGate()
        self._radio_prompt = radio_prompt or DeclineRadioPrompt()
        self._service_identity = service_identity
        self._completion_mode = _completion_mode(completion_mode or COMPLETION_MODE)
        self._send_chunk_size = send_chunk_size
        self._receive_chunk_size = receive_chunk_size
        self._accept_timeout = accept_timeout

        self._lock = asyncio.Lock()
        self._event_callbacks: list = []  # async fn(event_type, data)
        self._active: TransferSession | None = None
        self._selected_file = None
        self._devices: tuple[RemoteEndpoint, ...] = ()
        self._last_outcome: TransferOutcome | None = None
        self._scope: _CancelScope | None = None

    @property
    def active_session(self) -> TransferSession | None:
        return self._active

    @property
    def selected_file(self):
        return self._selected_file

    @property
    def devices(self) -> tuple[RemoteEndpoint, ...]:
        """The device list last presented to the user."""
        return self._devices

    @property
    def last_outcome(self) -> TransferOutcome | None:
        return self._last_outcome

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    async def _notify(self, kind: str, code: str, message: str) -> None:
        await self._emit("notification", {"type": kind, "code": code, "message": message})

    # === User intents ===

    def select_file(self, reference) -> None:
        """Remember the file the next send_to() will stream."""
        self._selected_file = reference
        logger.info(f"Selected file: {reference}")

    async def list_devices(self) -> tuple[RemoteEndpoint, ...]:
        """Present the paired devices; send_to() indexes into this list."""
        try:
            await self._ensure_radio()
        except BlueBoothError as e:
            await self._notify("error", _error_code(e), str(e))
            return ()

        devices = await asyncio.to_thread(self._directory.list_paired_endpoints)
        self._devices = tuple(devices)
        if not self._devices:
            await self._notify("info", "no_paired_devices", "No paired devices")
        await self._emit("devices", {"devices": [d.model_dump() for d in self._devices]})
        return self._devices

    async def start_listening(self) -> TransferOutcome:
        """Receiver role: wait for one peer, then receive one file."""
        session = await self._begin(TransferRole.RECEIVER)
        return await self._run(session, self._receive_worker)

    async def send_to(self, index: int) -> TransferOutcome:
        """Sender role: send the selected file to the device at ``index``."""
        if self._selected_file is None:
            await self._notify("warning", "no_file_selected", "Select a file to send first")
            raise InvalidSelection("No file selected")
        if not 0 <= index < len(self._devices):
            await self._notify("warning", "invalid_device", "Select a device from the list")
            raise InvalidSelection(f"No device at position {index}")

        endpoint = self._devices[index]
        session = await self._begin(
            TransferRole.SENDER,
            peer_name=endpoint.name,
            file_name=Path(self._selected_file).name,
        )
        reference = self._selected_file
        return await self._run(
            session,
            lambda loop, s, scope: self._send_worker(loop, s, scope, endpoint, reference),
        )

    def cancel(self) -> bool:
        """Close whatever the active session is blocked on. Returns False if there is none."""
        scope = self._scope
        if self._active is None or scope is None:
            return False

        logger.info("Cancelling the active session")
        scope.cancel()
        return True

    async def stop(self) -> None:
        """Abort the active session, if any."""
        self.cancel()

    # === Session lifecycle (event loop side) ===

    async def _begin(self, role: TransferRole, **fields) -> TransferSession:
        async with self._lock:
            if self._active is not None:
                raise SessionBusy(
                    f"A {self._active.role.value} session is already in progress"
                )
            session = TransferSession(session_id=str(uuid.uuid4()), role=role, **fields)
            self._active = session
            self._scope = _CancelScope()

        logger.info(f"Starting {role.value} session {session.session_id}")
        await self._emit("session_state", session.model_dump())
        return session

    async def _run(self, session: TransferSession, worker) -> TransferOutcome:
        loop = asyncio.get_running_loop()
        scope = self._scope
        try:
            await self._ensure_radio()
            self._require(Capability.STORAGE)
        except BlueBoothError as e:
            logger.error(f"{session.role.value.capitalize()} session aborted: {e}")
            outcome = TransferOutcome(
                role=session.role, status=TransferStatus.FAILED, error_detail=str(e)
            )
        except asyncio.CancelledError:
            self._clear(session)
            raise
        else:
            running = asyncio.ensure_future(
                asyncio.to_thread(self._guarded, session, scope, worker, loop)
            )
            try:
                outcome = await asyncio.shield(running)
            except asyncio.CancelledError:
                # The thread cannot be interrupted; close what it blocks on and
                # hold the session until it has released its listener/connection
                logger.info(f"Session {session.session_id} cancelled by its caller")
                scope.cancel()
                try:
                    await asyncio.wait([running])
                finally:
                    self._clear(session)
                raise

        await self._finish(session, outcome)
        return outcome

    async def _finish(self, session: TransferSession, outcome: TransferOutcome) -> None:
        session.status = outcome.status
        session.bytes_transferred = outcome.bytes_transferred
        session.saved_location = outcome.saved_location
        session.error_message = outcome.error_detail
        session.speed_bps = 0.0
        self._last_outcome = outcome
        self._clear(session)

        await self._emit("session_state", session.model_dump())

        if outcome.succeeded:
            if session.role == TransferRole.RECEIVER:
                message = f"File received and saved to {outcome.saved_location}"
            else:
                message = f"'{session.file_name}' sent to {session.peer_name}"
            await self._notify("success", "transfer_succeeded", message)
        else:
            await self._notify(
                "error", "transfer_failed", f"Transfer failed: {outcome.error_detail}"
            )

    def _clear(self, session: TransferSession) -> None:
        if self._active is session:
            self._active = None
            self._scope = None

    def _on_connected(self, session: TransferSession, peer: str) -> None:
        if session.status == TransferStatus.PENDING:
            session.status = TransferStatus.IN_PROGRESS
            session.peer_name = session.peer_name or peer
            asyncio.ensure_future(self._emit("session_state", session.model_dump()))

    def _on_progress(self, session: TransferSession, transferred: int, speed: float) -> None:
        if session.status != TransferStatus.IN_PROGRESS:
            return
        session.bytes_transferred = transferred
        session.speed_bps = speed
        asyncio.ensure_future(self._emit("transfer_progress", session.model_dump()))

    # === Preconditions ===

    def _require(self, capability: Capability) -> None:
        if not self._permission_gate.request(capability):
            raise PermissionDenied(f"Permission for {capability.value} was denied")

    async def _ensure_radio(self) -> None:
        self._require(Capability.BLUETOOTH)
        if await asyncio.to_thread(self._transport.radio_enabled):
            return
        if not self._radio_prompt.request_enable():
            raise RadioUnavailable("Bluetooth must be turned on to continue")
        if not await asyncio.to_thread(self._transport.radio_enabled):
            raise RadioUnavailable("Bluetooth is still off")

    # === Worker thread side ===

    def _guarded(
        self, session: TransferSession, scope: _CancelScope, worker, loop
    ) -> TransferOutcome:
        """Run a role, turning every failure into an outcome at the role boundary."""
        try:
            return worker(loop, session, scope)
        except BlueBoothError as e:
            logger.error(f"{session.role.value.capitalize()} failed: {e}")
            error = e
        except Exception as e:
            logger.error(f"Unexpected {session.role.value} error: {e}", exc_info=True)
            error = e
        return TransferOutcome(
            role=session.role, status=TransferStatus.FAILED, error_detail=str(error)
        )

    def _progress_callback(self, loop, session: TransferSession):
        def report(transferred: int, speed: float) -> None:
            loop.call_soon_threadsafe(self._on_progress, session, transferred, speed)
        return report

    def _receive_worker(
        self, loop, session: TransferSession, scope: _CancelScope
    ) -> TransferOutcome:
        listener = self._transport.listen(self._service_identity)
        try:
            scope.attach(listener)
            logger.info("Waiting for a connection...")
            connection = self._transport.accept(listener, timeout=self._accept_timeout)
        finally:
            listener.close()

        scope.attach(connection)
        loop.call_soon_threadsafe(self._on_connected, session, connection.peer_address)

        def create_destination():
            return self._destination_provider.create(received_file_name(), RECEIVED_MIME_TYPE)

        return receive_file(
            connection,
            create_destination,
            chunk_size=self._receive_chunk_size,
            mode=self._completion_mode,
            progress_callback=self._progress_callback(loop, session),
        )

    def _send_worker(
        self,
        loop,
        session: TransferSession,
        scope: _CancelScope,
        endpoint: RemoteEndpoint,
        reference,
    ) -> TransferOutcome:
        connection = self._transport.connect(endpoint, self._service_identity)
        scope.attach(connection)
        loop.call_soon_threadsafe(self._on_connected, session, endpoint.name)

        try:
            source = self._source_provider.open_source(reference)
        except SourceUnavailable:
            connection.close()
            raise

        return send_file(
            connection,
            source,
            chunk_size=self._send_chunk_size,
            mode=self._completion_mode,
            progress_callback=self._progress_callback(loop, session),
        )


def _error_code(error: BlueBoothError) -> str:
    if isinstance(error, PermissionDenied):
        return "permission_denied"
    if isinstance(error, RadioUnavailable):
        return "radio_disabled"
    return "error"
