"""
Blue Booth: console front-end.

A stand-in for the phone UI: listen for one incoming file, list paired
devices, select a file, and send it to a device by its position in the
list. All transfer work runs on worker threads; this loop only reads
commands and prints status events.
"""

import asyncio
import logging

from config import DEFAULT_SAVE_DIR, DEVICE_DIRECTORY, LOG_FORMAT, LOG_LEVEL
from discovery.bluez import BluetoothctlDirectory, run_bluetoothctl
from discovery.directory import PairedDeviceStore
from errors import InvalidSelection, SessionBusy
from transfer.collaborators import AllowAllGate
from transfer.manager import SessionController
from transfer.storage import DownloadsDestinationProvider, FileSourceProvider

# --- Logging ---
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

HELP = """Commands:
  listen          wait for one incoming file
  devices         list paired devices
  file <path>     select the file to send
  send <n>        send the selected file to device n
  cancel          abort the active transfer
  power           turn the Bluetooth adapter on
  pair <addr> <name>   remember a device paired elsewhere (store directory only)
  unpair <addr>        forget a remembered device
  quit"""


class ConsoleRadioPrompt:
    """Tells the user how to turn the radio on; the attempt is then retried by hand.

    The command loop owns stdin, so this prompt cannot ask for an answer.
    """

    def request_enable(self) -> bool:
        print("Bluetooth is off. Type 'power' to turn it on, then try again.")
        return False


async def print_event(event: str, data: dict) -> None:
    if event == "notification":
        print(f"[{data['type']}] {data['message']}")
    elif event == "session_state":
        print(f"Status: {data['role']} {data['status']} ({data['bytes_transferred']} bytes)")
    elif event == "transfer_progress":
        print(f"  {data['bytes_transferred']} bytes, {data['speed_bps'] / 1024:.1f} KiB/s")
    elif event == "devices":
        for index, device in enumerate(data["devices"]):
            print(f"  {index}: {device['name']} ({device['address']})")


def _start(tasks: set, coro) -> None:
    task = asyncio.create_task(coro)
    tasks.add(task)

    def done(t: asyncio.Task) -> None:
        tasks.discard(t)
        if t.cancelled():
            return
        error = t.exception()
        if isinstance(error, (SessionBusy, InvalidSelection)):
            print(f"Rejected: {error}")
        elif error is not None:
            logger.error(f"Session crashed: {error}", exc_info=error)

    task.add_done_callback(done)


def edit_store(store, command: str, argument: str) -> None:
    if not isinstance(store, PairedDeviceStore):
        print("Set BLUEBOOTH_DEVICE_DIRECTORY=store to manage devices here")
        return

    address, _, name = argument.partition(" ")
    if not address:
        print(f"Usage: {command} <addr>" + (" <name>" if command == "pair" else ""))
    elif command == "pair":
        print(f"Remembered {store.add(name.strip() or address, address)}")
    elif not store.remove(address):
        print(f"Unknown device {address}")


async def run_console(controller: SessionController, directory=None) -> None:
    tasks: set[asyncio.Task] = set()
    print(HELP)

    while True:
        line = (await asyncio.to_thread(input, "> ")).strip()
        command, _, argument = line.partition(" ")

        if command == "listen":
            _start(tasks, controller.start_listening())
        elif command == "devices":
            await controller.list_devices()
        elif command == "file":
            controller.select_file(argument or None)
        elif command == "send":
            try:
                index = int(argument)
            except ValueError:
                print("Usage: send <n>")
                continue
            _start(tasks, controller.send_to(index))
        elif command == "cancel":
            controller.cancel()
        elif command == "power":
            if await asyncio.to_thread(run_bluetoothctl, "power", "on") is None:
                print("Could not power the adapter on")
        elif command in ("pair", "unpair"):
            edit_store(directory, command, argument.strip())
        elif command in ("quit", "exit"):
            break
        elif command:
            print(HELP)

    await controller.stop()
    for task in tasks:
        task.cancel()


def build_directory():
    if DEVICE_DIRECTORY == "store":
        return PairedDeviceStore()
    return BluetoothctlDirectory()


def build_controller(directory) -> SessionController:
    # PyBluez is only needed when talking to a real adapter
    from transport.rfcomm import RfcommTransport

    controller = SessionController(
        transport=RfcommTransport(),
        directory=directory,
        source_provider=FileSourceProvider(),
        destination_provider=DownloadsDestinationProvider(DEFAULT_SAVE_DIR),
        permission_gate=AllowAllGate(),
        radio_prompt=ConsoleRadioPrompt(),
    )
    controller.on_event(print_event)
    return controller


if __name__ == "__main__":
    directory = build_directory()
    try:
        asyncio.run(run_console(build_controller(directory), directory))
    except (KeyboardInterrupt, EOFError):
        logger.info("Shutting down Blue Booth")
