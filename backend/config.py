"""Application-wide configuration constants."""

import os
import uuid
from pathlib import Path

# --- Identity ---
APP_NAME = "BlueBooth"
# Serial Port Profile UUID; both peers must advertise/look up the same value
SERVICE_UUID = uuid.UUID(
    os.getenv("BLUEBOOTH_SERVICE_UUID", "00001101-0000-1000-8000-00805F9B34FB")
)

# --- Transfer ---
SEND_CHUNK_SIZE = int(os.getenv("BLUEBOOTH_SEND_CHUNK_SIZE", 4096))
RECEIVE_CHUNK_SIZE = int(os.getenv("BLUEBOOTH_RECEIVE_CHUNK_SIZE", 8192))
# "legacy": connection close ends the transfer; "strict": length + digest trailer
COMPLETION_MODE = os.getenv("BLUEBOOTH_COMPLETION_MODE", "legacy").lower()
# Read failures whose text contains one of these count as a normal peer close
PEER_CLOSED_MARKERS = ("socket closed",)
PROGRESS_INTERVAL = 0.2  # seconds between progress events

# --- Storage ---
RECEIVED_NAME_PREFIX = "received_image_"
RECEIVED_NAME_SUFFIX = ".jpg"
RECEIVED_MIME_TYPE = "image/jpeg"
DEFAULT_SAVE_DIR = Path(
    os.getenv("BLUEBOOTH_SAVE_DIR", str(Path.home() / "Downloads" / "BlueBooth"))
)
CONFIG_DIR = Path(os.getenv("BLUEBOOTH_CONFIG_DIR", str(Path.home() / ".bluebooth")))
# "bluez": the adapter's bonded devices; "store": paired_devices.json in CONFIG_DIR
DEVICE_DIRECTORY = os.getenv("BLUEBOOTH_DEVICE_DIRECTORY", "bluez").lower()

# --- Logging ---
LOG_LEVEL = os.getenv("BLUEBOOTH_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
