"""Pydantic models for paired devices."""

from pydantic import BaseModel, ConfigDict


class RemoteEndpoint(BaseModel):
    """A paired remote device that can be selected as a transfer target."""
    model_config = ConfigDict(frozen=True)

    name: str
    address: str  # transport address, e.g. "AA:BB:CC:DD:EE:FF"

    def __str__(self) -> str:
        return f"{self.name} ({self.address})"
