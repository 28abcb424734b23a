"""
Mapping of execution-layer timestamps to consensus-layer slots.

Each network is anchored at its Deneb activation, the first slot at
which blob-carrying transactions exist.
"""

from dataclasses import dataclass
from typing import Dict

from .errors import PreBlobSupportError


@dataclass(frozen=True)
class NetworkTiming:
    name: str
    reference_timestamp: int
    reference_slot: int
    slot_duration: int = 12


NETWORKS: Dict[str, NetworkTiming] = {
    "mainnet": NetworkTiming(
        name="mainnet",
        reference_timestamp=1710338135,
        reference_slot=8626176,  # Deneb, epoch 269568
    ),
    "sepolia": NetworkTiming(
        name="sepolia",
        reference_timestamp=1706655072,
        reference_slot=4243456,  # Deneb, epoch 132608
    ),
    "holesky": NetworkTiming(
        name="holesky",
        reference_timestamp=1707305664,
        reference_slot=950272,  # Deneb, epoch 29696
    ),
}


class SlotResolver:
    """Pure timestamp -> slot function for one network."""

    def __init__(self, reference_timestamp: int, reference_slot: int, slot_duration: int = 12):
        if slot_duration <= 0:
            raise ValueError("slot_duration must be positive")
        self.reference_timestamp = reference_timestamp
        self.reference_slot = reference_slot
        self.slot_duration = slot_duration

    @classmethod
    def for_network(cls, name: str) -> "SlotResolver":
        try:
            timing = NETWORKS[name.lower()]
        except KeyError:
            raise ValueError(
                f"Unknown network '{name}'. Use one of: {', '.join(sorted(NETWORKS))}"
            ) from None
        return cls(timing.reference_timestamp, timing.reference_slot, timing.slot_duration)

    def slot(self, timestamp: int) -> int:
        if timestamp < self.reference_timestamp:
            raise PreBlobSupportError(
                f"Timestamp {timestamp} predates blob support "
                f"(reference timestamp {self.reference_timestamp})"
            )
        return self.reference_slot + (timestamp - self.reference_timestamp) // self.slot_duration

    __call__ = slot
