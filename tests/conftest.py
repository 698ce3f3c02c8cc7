"""Shared fixtures: a simulated radio pair and temp files."""

import pytest

from transfer.storage import DownloadsDestinationProvider
from transport.loopback import LoopbackAir, LoopbackRadio

RECEIVER_ADDRESS = "AA:AA:AA:AA:AA:01"
SENDER_ADDRESS = "BB:BB:BB:BB:BB:02"


@pytest.fixture
def air():
    return LoopbackAir()


@pytest.fixture
def receiver_radio(air):
    return LoopbackRadio(air, RECEIVER_ADDRESS, name="Receiver Phone")


@pytest.fixture
def sender_radio(air):
    return LoopbackRadio(air, SENDER_ADDRESS, name="Sender Laptop")


@pytest.fixture
def receiver_endpoint(receiver_radio):
    return receiver_radio.endpoint


@pytest.fixture
def save_dir(tmp_path):
    return tmp_path / "Downloads"


@pytest.fixture
def destination_provider(save_dir):
    return DownloadsDestinationProvider(save_dir)


@pytest.fixture
def make_file(tmp_path):
    """Write ``content`` to a new file under tmp_path and return its path."""
    counter = iter(range(1_000_000))

    def _make(content: bytes, name: str | None = None):
        path = tmp_path / (name or f"source_{next(counter)}.bin")
        path.write_bytes(content)
        return path

    return _make
