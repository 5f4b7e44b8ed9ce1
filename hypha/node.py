"""The spore: a node's identity, energy, capabilities and task bidding."""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union

from .agent import Bid, Capability, Task
from .eval import MetricsCollector
from .mesh import MeshConfig, TopicMesh
from .metabolism import BatteryMetabolism, Metabolism, PowerMode
from .mycelium import Spike
from .sensor import VirtualSensor
from .store import NodeStore, derive_peer_id

logger = logging.getLogger(__name__)

MESSAGE_PREFIX = "msg_"
MESH_TOPIC = "hypha"
BID_COST_MAH = 50.0
VALID_TOKEN_MARKER = "auth-valid"

QUORUM_BIDDERS = 3
QUORUM_SCORE = 0.8
CRITICAL_SCORE = 0.2
EXHAUSTED_SCORE = 0.05
MIN_REACH = 0.1


def _total_key(x: float) -> tuple:
    """Total order on floats: negative NaN lowest, positive NaN highest."""
    if math.isnan(x):
        return (1, 0.0) if math.copysign(1.0, x) > 0 else (-1, 0.0)
    return (0, x)


class SporeNode:
    """A node of the mesh whose identity and messages persist in a directory."""

    def __init__(
        self,
        storage_path: Union[str, Path],
        metabolism: Optional[Metabolism] = None,
    ) -> None:
        self.store = NodeStore(storage_path)
        self.signing_key = self.store.load_or_create_signing_key()
        self.peer_id = derive_peer_id(self.signing_key)
        self.power_mode = PowerMode.NORMAL
        self.metabolism: Metabolism = (
            metabolism if metabolism is not None else BatteryMetabolism()
        )
        self.capabilities: list[Capability] = []
        self.sensors: list[VirtualSensor] = []
        self.mesh = TopicMesh(MESH_TOPIC, MeshConfig())
        self.metrics = MetricsCollector()

    def __enter__(self) -> "SporeNode":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the node's storage."""
        self.store.close()

    def add_sensor(self, sensor: VirtualSensor) -> None:
        logger.info("peer %s added virtual sensor %s", self.peer_id, sensor.name)
        self.sensors.append(sensor)

    def add_capability(self, cap: Capability) -> None:
        logger.info("peer %s registered capability %r", self.peer_id, cap)
        self.capabilities.append(cap)

    def set_power_mode(self, mode: PowerMode) -> None:
        self.metabolism.set_mode(mode)
        self.power_mode = mode

    def energy_score(self) -> float:
        """Energy score from 0.0 to 1.0; 1.0 is a stable mains-powered node."""
        return self.metabolism.energy_score()

    def evaluate_task(self, task: Task, known_bids: int) -> Optional[Bid]:
        """Quorum-sensing auction: bid only with abundant energy or few rival bidders."""
        score = self.energy_score()
        if known_bids >= QUORUM_BIDDERS and score < QUORUM_SCORE:
            return None
        if score < CRITICAL_SCORE:
            return None
        if task.required_capability not in self.capabilities:
            return None
        return Bid(
            task_id=task.id,
            bidder_id=self.peer_id,
            energy_score=score,
            cost_mah=BID_COST_MAH,
        )

    def heartbeat_interval(self) -> timedelta:
        """Heartbeat period: slower on low energy, faster under backlog pressure."""
        score = self.energy_score()
        pressure = self.mesh.local_pressure

        if score < 0.2:
            base_ms = 60_000
        elif score < 0.5:
            base_ms = 10_000
        else:
            base_ms = 1_000

        if score > 0.4 and pressure > 5.0:
            factor = min(pressure / 5.0, 4.0)
            return timedelta(milliseconds=int(base_ms / factor))
        return timedelta(milliseconds=base_ms)

    def consume_energy(self, mah: float) -> bool:
        """Spend energy on an operation; False if the node had nothing left."""
        return self.metabolism.consume(mah)

    def mah_remaining(self) -> float:
        return self.metabolism.remaining()

    def is_exhausted(self) -> bool:
        """True when the node is too drained to take part."""
        return self.energy_score() < EXHAUSTED_SCORE

    def message_count(self) -> int:
        return len(self.store.keys_with_prefix(MESSAGE_PREFIX))

    def message_ids(self) -> list[str]:
        """Storage keys of all persisted messages, in byte order."""
        return self.store.keys_with_prefix(MESSAGE_PREFIX)

    def get_message(self, msg_id: str) -> Optional[bytes]:
        return self.store.get(f"{MESSAGE_PREFIX}{msg_id}")

    def simulate_receive(self, msg_id: str, payload: bytes) -> None:
        """Persist a message as if it had arrived from the network."""
        self.store.insert(f"{MESSAGE_PREFIX}{msg_id}", payload)

    def validate_ucan(self, token: str, required_cap: Capability) -> bool:
        """Accept tokens carrying the valid-token marker; no signature is checked."""
        if not token:
            return False
        return VALID_TOKEN_MARKER in token

    def process_task_bundle(self, task: Task, known_bids: list[Bid]) -> Optional[Bid]:
        """Bid on a task only if this node beats the best known bid for it.

        A winning bid is appended to ``known_bids`` and returned.
        """
        score = self.energy_score()

        if task.auth_token is not None and not self.validate_ucan(
            task.auth_token, task.required_capability
        ):
            logger.warning("rejected task %s due to invalid UCAN", task.id)
            return None

        rivals = [b for b in known_bids if b.task_id == task.id]
        if rivals:
            best = max(rivals, key=lambda b: _total_key(b.energy_score))
            if score < best.energy_score:
                return None

        if task.reach_intensity < MIN_REACH:
            return None

        if task.required_capability not in self.capabilities:
            return None

        bid = Bid(
            task_id=task.id,
            bidder_id=self.peer_id,
            energy_score=score * task.reach_intensity,
            cost_mah=BID_COST_MAH,
        )
        known_bids.append(bid)
        return bid

    def trigger_sync_spike(self, intensity: int) -> Spike:
        """Raise a synchrony spike to wake neighbours; return the spike to broadcast."""
        logger.info("peer %s triggering synchrony spike %s", self.peer_id, intensity)
        spike = Spike(source=self.peer_id, intensity=intensity, pattern_id=0)
        self.mesh.handle_spike(spike.source, spike.intensity)
        return spike