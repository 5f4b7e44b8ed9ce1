"""Energy accounting for spores: battery models and power modes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

FULL_CAPACITY_MAH = 2500.0
MAX_VOLTAGE = 4.2
MIN_VOLTAGE = 3.3


class PowerMode(Enum):
    """Coarse power state a node can be forced into."""

    NORMAL = "Normal"
    LOW_BATTERY = "LowBattery"
    CRITICAL = "Critical"


class Metabolism(ABC):
    """Resource accounting for a node."""

    @abstractmethod
    def energy_score(self) -> float:
        """Return a score from 0.0 (dead) to 1.0 (full or mains powered)."""

    @abstractmethod
    def consume(self, cost: float) -> bool:
        """Spend ``cost``; return False if nothing was left to spend."""

    @abstractmethod
    def remaining(self) -> float:
        """Return the remaining charge in mAh."""

    @abstractmethod
    def set_mode(self, mode: PowerMode) -> None:
        """Force the metabolism into the given power mode."""

    @abstractmethod
    def is_mains_powered(self) -> bool:
        """Return True if the node runs from mains power."""


@dataclass
class BatteryMetabolism(Metabolism):
    """A simple lithium battery model driven by voltage and remaining charge."""

    voltage: float = MAX_VOLTAGE
    mah_remaining: float = FULL_CAPACITY_MAH
    temp_celsius: float = 25.0
    is_mains: bool = False

    def energy_score(self) -> float:
        if self.is_mains:
            return 1.0
        v_score = (self.voltage - MIN_VOLTAGE) / (MAX_VOLTAGE - MIN_VOLTAGE)
        c_score = self.mah_remaining / FULL_CAPACITY_MAH
        return max(0.0, min(1.0, v_score * 0.4 + c_score * 0.6))

    def consume(self, cost: float) -> bool:
        if self.mah_remaining <= 0.0:
            return False
        self.mah_remaining = max(self.mah_remaining - cost, 0.0)
        capacity_ratio = self.mah_remaining / FULL_CAPACITY_MAH
        self.voltage = MIN_VOLTAGE + capacity_ratio * 0.9
        return True

    def remaining(self) -> float:
        return self.mah_remaining

    def set_mode(self, mode: PowerMode) -> None:
        if mode is PowerMode.NORMAL:
            self.voltage, self.mah_remaining = 4.0, 2000.0
        elif mode is PowerMode.LOW_BATTERY:
            self.voltage, self.mah_remaining = 3.6, 500.0
        elif mode is PowerMode.CRITICAL:
            self.voltage, self.mah_remaining = 3.3, 50.0
        else:
            raise ValueError(f"unknown power mode: {mode!r}")

    def is_mains_powered(self) -> bool:
        return self.is_mains


@dataclass
class MockMetabolism(Metabolism):
    """A metabolism whose energy score is set directly, for simulations and tests."""

    energy: float
    is_mains: bool = False

    def energy_score(self) -> float:
        return self.energy

    def consume(self, cost: float) -> bool:
        if self.energy <= 0.0:
            return False
        self.energy = max(self.energy - cost, 0.0)
        return True

    def remaining(self) -> float:
        return self.energy * FULL_CAPACITY_MAH

    def set_mode(self, mode: PowerMode) -> None:
        """Power modes do not affect a mock metabolism."""

    def is_mains_powered(self) -> bool:
        return self.is_mains