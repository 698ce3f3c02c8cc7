"""Request/response interfaces to the presentation layer's prompts."""

from enum import Enum
from typing import Protocol


class Capability(str, Enum):
    """Capabilities the permission gate must grant before use."""
    BLUETOOTH = "bluetooth"  # radio access: listen, connect, list paired devices
    STORAGE = "storage"  # reading the source file / writing into downloads


class PermissionGate(Protocol):
    def request(self, capability: Capability) -> bool:
        """Return True if the capability is granted."""


class RadioPrompt(Protocol):
    def request_enable(self) -> bool:
        """Ask the user to turn the radio on. Return True if they did."""


class AllowAllGate:
    """Permission gate for platforms without runtime permissions."""

    def request(self, capability: Capability) -> bool:
        return True


class DeclineRadioPrompt:
    """Radio prompt for headless use: never turns the radio on."""

    def request_enable(self) -> bool:
        return False
