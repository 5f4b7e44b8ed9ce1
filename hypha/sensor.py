"""Virtual sensors whose readings can be fed from the mesh."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class VirtualSensor(ABC):
    """A sensor a spore exposes; its value may be updated by mesh gossip."""

    name: str

    @abstractmethod
    def read(self) -> float:
        """Return the current reading."""

    @abstractmethod
    def update_from_mesh(self, value: float) -> None:
        """Replace the reading with a value learned from the mesh."""


@dataclass
class BasicSensor(VirtualSensor):
    """A sensor that reports the last value it was given."""

    name: str
    last_value: float = 0.0

    def read(self) -> float:
        return self.last_value

    def update_from_mesh(self, value: float) -> None:
        self.last_value = value