"""Agent-level messages: capabilities, tasks, bids and energy advertisements."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional, Union

JsonInput = Union[str, bytes, bytearray, Mapping]

_U8_MAX = 2**8 - 1
_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1


def _fmin(a: float, b: float) -> float:
    """Minimum that ignores a NaN operand."""
    if math.isnan(a):
        return b
    if math.isnan(b):
        return a
    return a if a <= b else b


def _load_object(data: Any, what: str) -> Mapping:
    if isinstance(data, Mapping):
        return data
    if isinstance(data, (bytes, bytearray, memoryview)):
        data = bytes(data).decode("utf-8")
    if not isinstance(data, str):
        raise ValueError(f"{what}: expected JSON text, got {type(data).__name__}")
    value = json.loads(data)
    if not isinstance(value, dict):
        raise ValueError(f"{what}: expected a JSON object")
    return value


def _field(obj: Mapping, key: str, what: str) -> Any:
    try:
        return obj[key]
    except KeyError:
        raise ValueError(f"{what}: missing field `{key}`") from None


def _as_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"`{name}` must be a string")
    return value


def _as_float(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"`{name}` must be a number")
    return float(value)


def _as_int(value: Any, name: str, upper: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"`{name}` must be an integer")
    if not 0 <= value <= upper:
        raise ValueError(f"`{name}` out of range: {value}")
    return value


class CapabilityKind(Enum):
    """The kind of resource a spore offers."""

    COMPUTE = "Compute"
    STORAGE = "Storage"
    SENSING = "Sensing"


@dataclass(frozen=True)
class Capability:
    """A capability of a spore: compute units, storage bytes or a sensor name."""

    kind: CapabilityKind
    value: Union[int, str]

    def __post_init__(self) -> None:
        if self.kind is CapabilityKind.COMPUTE:
            _as_int(self.value, "Compute", _U32_MAX)
        elif self.kind is CapabilityKind.STORAGE:
            _as_int(self.value, "Storage", _U64_MAX)
        else:
            _as_str(self.value, "Sensing")

    def _to_value(self) -> dict:
        return {self.kind.value: self.value}

    @classmethod
    def _from_value(cls, obj: Any) -> "Capability":
        if not isinstance(obj, Mapping) or len(obj) != 1:
            raise ValueError("Capability: expected an object with exactly one variant")
        (tag, value), = obj.items()
        try:
            kind = CapabilityKind(tag)
        except ValueError:
            raise ValueError(f"Capability: unknown variant `{tag}`") from None
        return cls(kind, value)

    def to_json(self) -> str:
        return json.dumps(self._to_value())

    @classmethod
    def from_json(cls, data: JsonInput) -> "Capability":
        return cls._from_value(_load_object(data, "Capability"))


@dataclass
class EnergyStatus:
    """Energy advertisement used for gradient-based routing."""

    source_id: str
    energy_score: float

    def to_json(self) -> str:
        return json.dumps({"source_id": self.source_id, "energy_score": self.energy_score})

    @classmethod
    def from_json(cls, data: JsonInput) -> "EnergyStatus":
        obj = _load_object(data, "EnergyStatus")
        return cls(
            source_id=_as_str(_field(obj, "source_id", "EnergyStatus"), "source_id"),
            energy_score=_as_float(_field(obj, "energy_score", "EnergyStatus"), "energy_score"),
        )


@dataclass
class Task:
    """A unit of work that diffuses through the mesh looking for a bidder."""

    id: str
    required_capability: Capability
    priority: int
    reach_intensity: float
    source_id: str
    auth_token: Optional[str] = None

    @classmethod
    def new(cls, id: str, capability: Capability, priority: int, source_id: str) -> "Task":
        return cls(
            id=id,
            required_capability=capability,
            priority=priority,
            reach_intensity=1.0,
            source_id=source_id,
        )

    def with_auth(self, token: str) -> "Task":
        """Return a copy of this task carrying an authorization token."""
        return replace(self, auth_token=token)

    def diffuse(
        self, conductivity: float, neighbor_energy: float, neighbor_pressure: float
    ) -> float:
        """Return the reach intensity this task keeps after diffusing to a neighbor."""
        pressure_factor = 1.0 - _fmin(neighbor_pressure, 10.0) / 10.0
        return (
            self.reach_intensity
            * _fmin(conductivity, 3.0)
            * _fmin(neighbor_energy + 0.2, 1.0)
            * _fmin(pressure_factor + 0.1, 1.0)
            * 0.9
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "id": self.id,
                "required_capability": self.required_capability._to_value(),
                "priority": self.priority,
                "reach_intensity": self.reach_intensity,
                "source_id": self.source_id,
                "auth_token": self.auth_token,
            }
        )

    @classmethod
    def from_json(cls, data: JsonInput) -> "Task":
        obj = _load_object(data, "Task")
        token = obj.get("auth_token")
        if token is not None:
            token = _as_str(token, "auth_token")
        return cls(
            id=_as_str(_field(obj, "id", "Task"), "id"),
            required_capability=Capability._from_value(
                _field(obj, "required_capability", "Task")
            ),
            priority=_as_int(_field(obj, "priority", "Task"), "priority", _U8_MAX),
            reach_intensity=_as_float(
                _field(obj, "reach_intensity", "Task"), "reach_intensity"
            ),
            source_id=_as_str(_field(obj, "source_id", "Task"), "source_id"),
            auth_token=token,
        )


@dataclass
class Bid:
    """A spore's offer to take on a task."""

    task_id: str
    bidder_id: str
    energy_score: float
    cost_mah: float