"""Tests for the SessionController: role orchestration, preconditions, events."""

import asyncio
import os
import time
from pathlib import Path

import pytest

from config import SERVICE_UUID
from errors import InvalidSelection, SessionBusy
from transfer.collaborators import Capability
import transfer.manager as manager
from transfer.manager import SessionController
from transfer.models import Completion, CompletionMode, TransferRole, TransferStatus
from transfer.storage import DownloadsDestinationProvider, FileSourceProvider
from transport.loopback import LoopbackRadio

from helpers import StaticDirectory, wait_for


class EventLog:
    """Collects (event, data) pairs emitted by a controller."""

    def __init__(self):
        self.events = []

    async def __call__(self, event, data):
        self.events.append((event, data))

    def notifications(self):
        return [data for event, data in self.events if event == "notification"]

    def codes(self):
        return [n["code"] for n in self.notifications()]

    def statuses(self):
        return [data["status"] for event, data in self.events if event == "session_state"]


class DenyGate:
    def __init__(self, *denied):
        self.denied = set(denied)

    def request(self, capability):
        return capability not in self.denied


class PowerOnPrompt:
    """Radio prompt where the user agrees and the radio comes on."""

    def __init__(self, radio):
        self.radio = radio
        self.asked = 0

    def request_enable(self):
        self.asked += 1
        self.radio.powered = True
        return True


def make_controller(radio, directory=None, save_dir=None, **kwargs):
    controller = SessionController(
        transport=radio,
        directory=directory or StaticDirectory(),
        source_provider=FileSourceProvider(),
        destination_provider=DownloadsDestinationProvider(save_dir or "unused"),
        accept_timeout=10,
        **kwargs,
    )
    log = EventLog()
    controller.on_event(log)
    return controller, log


@pytest.fixture
def receiver(receiver_radio, save_dir):
    return make_controller(receiver_radio, save_dir=save_dir)


@pytest.fixture
def sender(sender_radio, receiver_endpoint):
    return make_controller(sender_radio, StaticDirectory([receiver_endpoint]))


async def start_receiver(controller, radio):
    task = asyncio.create_task(controller.start_listening())
    await wait_for(lambda: radio.air.lookup(radio.address, SERVICE_UUID) is not None)
    return task


@pytest.mark.asyncio
async def test_listen_and_send_end_to_end(receiver, sender, receiver_radio, make_file, save_dir):
    receiver_controller, receiver_log = receiver
    sender_controller, sender_log = sender
    payload = os.urandom(300_000)
    source = make_file(payload, "holiday.png")

    listening = await start_receiver(receiver_controller, receiver_radio)
    sender_controller.select_file(source)
    devices = await sender_controller.list_devices()
    assert [d.name for d in devices] == ["Receiver Phone"]

    sent = await sender_controller.send_to(0)
    received = await asyncio.wait_for(listening, timeout=10)

    assert sent.status == TransferStatus.SUCCEEDED
    assert sent.role == TransferRole.SENDER
    assert received.status == TransferStatus.SUCCEEDED
    assert received.role == TransferRole.RECEIVER
    assert received.bytes_transferred == len(payload)

    # The name and type are synthesized, not carried over the wire
    saved = list(save_dir.iterdir())
    assert len(saved) == 1
    assert saved[0].name.startswith("received_image_")
    assert saved[0].suffix == ".jpg"
    assert saved[0].read_bytes() == payload
    assert received.saved_location == str(saved[0])

    assert receiver_log.notifications()[-1]["code"] == "transfer_succeeded"
    assert str(saved[0]) in receiver_log.notifications()[-1]["message"]
    assert "holiday.png" in sender_log.notifications()[-1]["message"]
    assert sender_log.statuses() == ["pending", "in_progress", "succeeded"]

    assert receiver_controller.active_session is None
    assert sender_controller.active_session is None
    assert receiver_controller.last_outcome == received


@pytest.mark.asyncio
async def test_strict_mode_end_to_end(receiver_radio, sender_radio, receiver_endpoint, save_dir, make_file):
    receiver_controller, _ = make_controller(
        receiver_radio, save_dir=save_dir, completion_mode=CompletionMode.STRICT
    )
    sender_controller, _ = make_controller(
        sender_radio, StaticDirectory([receiver_endpoint]), completion_mode=CompletionMode.STRICT
    )
    payload = os.urandom(70_000)

    listening = await start_receiver(receiver_controller, receiver_radio)
    sender_controller.select_file(make_file(payload))
    await sender_controller.list_devices()
    await sender_controller.send_to(0)
    received = await asyncio.wait_for(listening, timeout=10)

    assert received.completion == Completion.TRAILER_VERIFIED
    assert Path(received.saved_location).read_bytes() == payload


@pytest.mark.asyncio
async def test_second_session_is_rejected_while_one_is_active(receiver, receiver_radio, make_file):
    controller, _ = receiver
    listening = await start_receiver(controller, receiver_radio)

    with pytest.raises(SessionBusy):
        await controller.start_listening()

    controller.select_file(make_file(b"data"))
    controller._devices = (receiver_radio.endpoint,)
    with pytest.raises(SessionBusy):
        await controller.send_to(0)

    # The first session is untouched until it is cancelled
    assert controller.active_session.role == TransferRole.RECEIVER
    assert controller.cancel()
    outcome = await asyncio.wait_for(listening, timeout=5)
    assert outcome.status == TransferStatus.FAILED
    assert outcome.error_detail in ("Listener closed", "Session cancelled")
    assert controller.active_session is None
    assert receiver_radio.air.lookup(receiver_radio.address, SERVICE_UUID) is None


@pytest.mark.asyncio
async def test_new_session_allowed_after_previous_finished(receiver, receiver_radio):
    controller, _ = receiver

    first = await start_receiver(controller, receiver_radio)
    controller.cancel()
    await asyncio.wait_for(first, timeout=5)

    second = await start_receiver(controller, receiver_radio)
    assert controller.active_session is not None
    controller.cancel()
    outcome = await asyncio.wait_for(second, timeout=5)
    assert outcome.status == TransferStatus.FAILED


@pytest.mark.asyncio
async def test_send_without_selected_file_is_rejected(sender):
    controller, log = sender
    await controller.list_devices()

    with pytest.raises(InvalidSelection):
        await controller.send_to(0)

    assert "no_file_selected" in log.codes()
    assert controller.active_session is None


@pytest.mark.asyncio
async def test_send_to_unknown_index_is_rejected(sender, make_file):
    controller, log = sender
    controller.select_file(make_file(b"data"))
    await controller.list_devices()

    with pytest.raises(InvalidSelection):
        await controller.send_to(5)
    assert "invalid_device" in log.codes()


@pytest.mark.asyncio
async def test_send_without_listener_fails_with_transport_error(sender, make_file):
    controller, log = sender
    controller.select_file(make_file(b"data"))
    await controller.list_devices()

    outcome = await controller.send_to(0)

    assert outcome.status == TransferStatus.FAILED
    assert "not found" in outcome.error_detail
    assert log.codes()[-1] == "transfer_failed"
    assert controller.active_session is None


@pytest.mark.asyncio
async def test_invalid_source_closes_connection_and_sends_nothing(
    receiver, sender, receiver_radio, tmp_path
):
    receiver_controller, _ = receiver
    sender_controller, _ = sender

    listening = await start_receiver(receiver_controller, receiver_radio)
    sender_controller.select_file(tmp_path / "deleted.jpg")
    await sender_controller.list_devices()

    sent = await sender_controller.send_to(0)
    received = await asyncio.wait_for(listening, timeout=10)

    assert sent.status == TransferStatus.FAILED
    assert "Not a readable file" in sent.error_detail
    assert sent.bytes_transferred == 0
    # The receiver only sees the connection close
    assert received.bytes_transferred == 0


@pytest.mark.asyncio
async def test_radio_off_and_user_declines(receiver_radio, save_dir):
    receiver_radio.powered = False
    controller, log = make_controller(receiver_radio, save_dir=save_dir)

    outcome = await controller.start_listening()

    assert outcome.status == TransferStatus.FAILED
    assert "Bluetooth" in outcome.error_detail
    assert log.codes() == ["transfer_failed"]
    assert controller.active_session is None


@pytest.mark.asyncio
async def test_radio_off_and_user_enables_it(receiver_radio, sender_radio, receiver_endpoint, save_dir):
    receiver_radio.powered = False
    prompt = PowerOnPrompt(receiver_radio)
    controller, _ = make_controller(receiver_radio, save_dir=save_dir, radio_prompt=prompt)

    listening = await start_receiver(controller, receiver_radio)
    assert prompt.asked == 1

    connection = sender_radio.connect(receiver_endpoint, SERVICE_UUID)
    connection.write(b"abc")
    connection.close()

    outcome = await asyncio.wait_for(listening, timeout=10)
    assert outcome.status == TransferStatus.SUCCEEDED
    assert outcome.bytes_transferred == 3


@pytest.mark.asyncio
async def test_bluetooth_permission_denied(receiver_radio, save_dir):
    controller, log = make_controller(
        receiver_radio, save_dir=save_dir, permission_gate=DenyGate(Capability.BLUETOOTH)
    )

    assert await controller.list_devices() == ()
    assert log.codes() == ["permission_denied"]

    outcome = await controller.start_listening()
    assert outcome.status == TransferStatus.FAILED
    assert "denied" in outcome.error_detail
    assert receiver_radio.air.lookup(receiver_radio.address, SERVICE_UUID) is None


@pytest.mark.asyncio
async def test_storage_permission_denied(sender_radio, receiver_endpoint, make_file):
    controller, _ = make_controller(
        sender_radio,
        StaticDirectory([receiver_endpoint]),
        permission_gate=DenyGate(Capability.STORAGE),
    )
    controller.select_file(make_file(b"data"))
    await controller.list_devices()

    outcome = await controller.send_to(0)

    assert outcome.status == TransferStatus.FAILED
    assert "storage" in outcome.error_detail


@pytest.mark.asyncio
async def test_no_paired_devices_is_not_an_error(sender_radio):
    controller, log = make_controller(sender_radio, StaticDirectory())

    assert await controller.list_devices() == ()
    assert log.codes() == ["no_paired_devices"]


@pytest.mark.asyncio
async def test_cancel_without_session_is_noop(sender):
    controller, _ = sender
    assert controller.cancel() is False


class SlowListenRadio(LoopbackRadio):
    """Radio whose service registration takes a while, as SDP can on real adapters."""

    def __init__(self, *args, delay=0.3, **kwargs):
        super().__init__(*args, **kwargs)
        self.delay = delay

    def listen(self, service_identity):
        time.sleep(self.delay)
        return super().listen(service_identity)


@pytest.mark.asyncio
async def test_cancelled_task_releases_listener_before_next_session(air, sender_radio, save_dir):
    radio = SlowListenRadio(air, "AA:AA:AA:AA:AA:09", name="Slow Phone")
    controller, _ = make_controller(radio, save_dir=save_dir)

    first = asyncio.create_task(controller.start_listening())
    await asyncio.sleep(0.1)  # worker is inside listen()
    first.cancel()
    await asyncio.sleep(0.05)

    # The session stays owned until its worker has let go of the listener
    with pytest.raises(SessionBusy):
        await controller.start_listening()
    with pytest.raises(asyncio.CancelledError):
        await first

    assert controller.active_session is None
    assert air.lookup(radio.address, SERVICE_UUID) is None

    second = await start_receiver(controller, radio)
    connection = sender_radio.connect(radio.endpoint, SERVICE_UUID)
    connection.write(b"abc")
    connection.close()
    outcome = await asyncio.wait_for(second, timeout=10)

    assert outcome.status == TransferStatus.SUCCEEDED
    assert outcome.bytes_transferred == 3
    assert air.lookup(radio.address, SERVICE_UUID) is None


@pytest.mark.asyncio
async def test_cancelled_task_mid_accept_closes_listener(receiver, receiver_radio):
    controller, log = receiver
    listening = await start_receiver(controller, receiver_radio)

    listening.cancel()
    with pytest.raises(asyncio.CancelledError):
        await listening

    assert controller.active_session is None
    assert receiver_radio.air.lookup(receiver_radio.address, SERVICE_UUID) is None
    assert "transfer_failed" not in log.codes()


def test_completion_mode_accepts_config_strings(receiver_radio):
    controller, _ = make_controller(receiver_radio, completion_mode="strict")
    assert controller._completion_mode == CompletionMode.STRICT


def test_unknown_completion_mode_is_reported_clearly(receiver_radio, monkeypatch):
    monkeypatch.setattr(manager, "COMPLETION_MODE", "stirct")

    with pytest.raises(ValueError, match="BLUEBOOTH_COMPLETION_MODE"):
        make_controller(receiver_radio)
