"""Networking fabric definitions: transport profiles, topics and spike signals."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum

from .agent import JsonInput, _as_int, _as_str, _field, _load_object

_U8_MAX = 2**8 - 1

PROTOCOL_VERSION = "/hypha/1.0.0"
STATUS_TOPIC = "hypha_energy_status"
CONTROL_TOPIC = "hypha_mesh_control"
TASK_TOPIC = "hypha_task_stream"
SPIKE_TOPIC = "hypha_spikes"
SHARED_STATE_TOPIC = "hypha_global_state"


class NetProfile(Enum):
    """Transport stack a node uses."""

    TCP = "Tcp"
    """TCP with Noise and Yamux."""
    TCP_QUIC = "TcpQuic"
    """TCP with Noise and Yamux, plus QUIC."""
    MOBILE = "Mobile"
    """Low-power mobile profile preferring QUIC and relays."""


DEFAULT_NET_PROFILE = NetProfile.TCP


@dataclass(frozen=True)
class Spike:
    """A rapid alert signal; ``intensity`` and ``pattern_id`` fit in a byte."""

    source: str
    intensity: int
    pattern_id: int = 0

    def __post_init__(self) -> None:
        _as_str(self.source, "source")
        _as_int(self.intensity, "intensity", _U8_MAX)
        _as_int(self.pattern_id, "pattern_id", _U8_MAX)

    def to_json(self) -> str:
        return json.dumps(
            {
                "source": self.source,
                "intensity": self.intensity,
                "pattern_id": self.pattern_id,
            }
        )

    @classmethod
    def from_json(cls, data: JsonInput) -> "Spike":
        obj = _load_object(data, "Spike")
        return cls(
            source=_field(obj, "source", "Spike"),
            intensity=_field(obj, "intensity", "Spike"),
            pattern_id=_field(obj, "pattern_id", "Spike"),
        )