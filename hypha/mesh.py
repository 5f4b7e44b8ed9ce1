"""Gossip mesh management with energy-aware peer scoring.

Maintains a gossipsub-style mesh per topic: target degree ``d`` with bounds
``d_low``/``d_high``, peer scores that blend energy, activity, path
conductivity and pressure, opportunistic grafting, backoff after pruning and
lazy ``IHAVE`` gossip. It runs without any network and can be driven directly
in simulations.
"""

from __future__ import annotations

import math
import random
import time
from dataclasses import dataclass, field
from itertools import islice
from typing import Optional, Union

PRUNE_BACKOFF = 60.0
REPLACE_BACKOFF = 30.0
IHAVE_MAX_IDS = 10
SPIKE_DANGER_THRESHOLD = 200
MAX_PRESSURE = 10.0


def _total_key(x: float) -> tuple:
    """Sort key giving floats a total order with NaN above every number."""
    return (1, 0.0) if math.isnan(x) else (0, x)


def _fmin(a: float, b: float) -> float:
    """Minimum that ignores a NaN operand."""
    if math.isnan(a):
        return b
    if math.isnan(b):
        return a
    return a if a <= b else b


def _fmax(a: float, b: float) -> float:
    """Maximum that ignores a NaN operand."""
    if math.isnan(a):
        return b
    if math.isnan(b):
        return a
    return a if a >= b else b


@dataclass
class MeshConfig:
    """Mesh parameters, defaulting to gossipsub v1.1 values."""

    d: int = 6
    d_low: int = 4
    d_high: int = 12
    d_lazy: int = 6
    heartbeat_interval: float = 1.0
    opportunistic_graft_threshold: float = 0.3
    graft_threshold: float = 0.1
    prune_threshold: float = 0.05

    @classmethod
    def adaptive(cls, energy_score: float) -> "MeshConfig":
        """Return a configuration with a smaller mesh for low-energy nodes."""
        config = cls()
        if energy_score < 0.2:
            config.d, config.d_low, config.d_high, config.d_lazy = 2, 1, 4, 2
        elif energy_score < 0.5:
            config.d, config.d_low, config.d_high, config.d_lazy = 4, 2, 8, 4
        return config


@dataclass
class MeshPeer:
    """What the mesh knows about one peer."""

    id: str
    energy_score: float
    conductivity: float = 1.0
    pressure: float = 0.0
    message_count: int = 0
    last_seen: float = field(default_factory=time.monotonic)
    in_mesh: bool = False

    def score(self) -> float:
        activity_score = min(self.message_count / 100.0, 1.0)
        normalized_conductivity = _fmin(self.conductivity, 5.0) / 5.0
        pressure_score = 1.0 - _fmin(self.pressure, MAX_PRESSURE) / MAX_PRESSURE
        return (
            self.energy_score * 0.3
            + activity_score * 0.2
            + normalized_conductivity * 0.3
            + pressure_score * 0.2
        )


@dataclass(frozen=True)
class Graft:
    """Request to join the sender into the receiver's mesh."""

    topic: str


@dataclass(frozen=True)
class Prune:
    """Notice of removal from a mesh; ``backoff`` is in seconds."""

    topic: str
    backoff: float


@dataclass(frozen=True)
class IHave:
    """Lazy gossip announcing message ids the sender holds."""

    topic: str
    message_ids: tuple


@dataclass(frozen=True)
class IWant:
    """Request for messages announced in an ``IHave``."""

    message_ids: tuple


MeshControl = Union[Graft, Prune, IHave, IWant]


@dataclass
class MeshStats:
    """A snapshot of the mesh's state."""

    mesh_size: int
    known_peers: int
    median_score: float
    min_score: float
    max_score: float
    messages_cached: int
    duplicate_count: int
    backoff_count: int


class TopicMesh:
    """The mesh of peers for a single topic."""

    def __init__(self, topic: str, config: Optional[MeshConfig] = None) -> None:
        self.topic = topic
        self.config = config if config is not None else MeshConfig()
        self.local_pressure = 0.0
        self.pulse_phase = random.random()
        self.mesh_peers: set[str] = set()
        self.known_peers: dict[str, MeshPeer] = {}
        self.message_cache: set[str] = set()
        self.duplicate_count = 0
        self.backoff: dict[str, float] = {}

    def set_pressure(self, pressure: float) -> None:
        self.local_pressure = pressure

    def tick_pulse(self, delta: float) -> None:
        self.pulse_phase = math.fmod(self.pulse_phase + delta, 1.0)

    def align_pulse(self, neighbor_phase: float, weight: float) -> None:
        """Move the pulse phase toward a neighbor's along the shorter way round."""
        diff = neighbor_phase - self.pulse_phase
        if diff > 0.5:
            diff -= 1.0
        elif diff < -0.5:
            diff += 1.0
        self.pulse_phase = math.fmod(self.pulse_phase + diff * weight, 1.0)
        if self.pulse_phase < 0.0:
            self.pulse_phase += 1.0

    def update_peer_pressure(self, id: str, pressure: float) -> None:
        peer = self.known_peers.get(id)
        if peer is not None:
            peer.pressure = pressure

    def add_peer(self, id: str, energy_score: float) -> None:
        """Register a peer unless it is already known."""
        self.known_peers.setdefault(id, MeshPeer(id, energy_score))

    def update_peer_score(self, id: str, energy_score: float) -> None:
        """Set a peer's energy score, registering it if needed."""
        peer = self.known_peers.setdefault(id, MeshPeer(id, energy_score))
        peer.energy_score = energy_score
        peer.last_seen = time.monotonic()

    def record_message(self, peer_id: str, msg_id: str) -> None:
        """Account for a message from a peer, thickening the path it used."""
        peer = self.known_peers.get(peer_id)
        if peer is not None:
            peer.message_count += 1
            peer.last_seen = time.monotonic()
            pressure_grad = _fmax(abs(self.local_pressure - peer.pressure), 0.1)
            peer.conductivity = _fmin(peer.conductivity + 0.1 * pressure_grad, 10.0)

        if msg_id in self.message_cache:
            self.duplicate_count += 1
        else:
            self.message_cache.add(msg_id)

    def mesh_size(self) -> int:
        return len(self.mesh_peers)

    def _mesh_scores(self) -> list[tuple[str, float]]:
        return [
            (pid, self.known_peers[pid].score())
            for pid in self.mesh_peers
            if pid in self.known_peers
        ]

    def mesh_median_score(self) -> float:
        scores = sorted((s for _, s in self._mesh_scores()), key=_total_key)
        if not scores:
            return 0.0
        mid = len(scores) // 2
        if len(scores) % 2 == 0:
            return (scores[mid - 1] + scores[mid]) / 2.0
        return scores[mid]

    def _eligible(self, pid: str) -> bool:
        return pid not in self.mesh_peers and pid not in self.backoff

    def _leave(self, pid: str, backoff: float, now: float, controls: list) -> None:
        self.mesh_peers.discard(pid)
        peer = self.known_peers.get(pid)
        if peer is not None:
            peer.in_mesh = False
        controls.append((pid, Prune(self.topic, backoff)))
        self.backoff[pid] = now + backoff

    def _join(self, pid: str, controls: list) -> None:
        self.mesh_peers.add(pid)
        peer = self.known_peers.get(pid)
        if peer is not None:
            peer.in_mesh = True
        controls.append((pid, Graft(self.topic)))

    def heartbeat(self) -> list[tuple[str, MeshControl]]:
        """Maintain the mesh and return the control messages to send, by peer."""
        controls: list[tuple[str, MeshControl]] = []

        for peer in self.known_peers.values():
            peer.conductivity = _fmax(peer.conductivity * 0.95, 0.5)

        now = time.monotonic()
        self.backoff = {pid: exp for pid, exp in self.backoff.items() if exp > now}

        to_prune = [
            pid
            for pid in self.mesh_peers
            if pid not in self.known_peers
            or self.known_peers[pid].score() < self.config.prune_threshold
        ]
        for pid in to_prune:
            self._leave(pid, PRUNE_BACKOFF, now, controls)

        while len(self.mesh_peers) > self.config.d_high:
            scored = self._mesh_scores()
            if not scored:
                break
            lowest, _ = min(scored, key=lambda item: _total_key(item[1]))
            self._leave(lowest, PRUNE_BACKOFF, now, controls)

        while len(self.mesh_peers) < self.config.d_low:
            candidates = [
                (pid, peer.score())
                for pid, peer in self.known_peers.items()
                if self._eligible(pid) and peer.score() >= self.config.graft_threshold
            ]
            if not candidates:
                break
            best, _ = max(candidates, key=lambda item: _total_key(item[1]))
            self._join(best, controls)

        median = self.mesh_median_score()
        if (
            median < self.config.opportunistic_graft_threshold
            and len(self.mesh_peers) < self.config.d_high
        ):
            candidates = [
                (pid, peer.score())
                for pid, peer in self.known_peers.items()
                if self._eligible(pid) and peer.score() > median
            ]
            candidates.sort(key=lambda item: _total_key(item[1]), reverse=True)
            for pid, _ in candidates[:2]:
                if len(self.mesh_peers) >= self.config.d_high:
                    break
                self._join(pid, controls)

        if len(self.mesh_peers) >= self.config.d_low:
            scored = self._mesh_scores()
            if scored:
                weak_id, weak_score = min(scored, key=lambda item: _total_key(item[1]))
                candidates = [
                    (pid, peer.score())
                    for pid, peer in self.known_peers.items()
                    if self._eligible(pid) and peer.score() > weak_score + 0.1
                ]
                if candidates:
                    best, _ = max(candidates, key=lambda item: _total_key(item[1]))
                    self._leave(weak_id, REPLACE_BACKOFF, now, controls)
                    self._join(best, controls)

        non_mesh = [pid for pid in self.known_peers if pid not in self.mesh_peers]
        targets = random.sample(non_mesh, min(self.config.d_lazy, len(non_mesh)))
        if self.message_cache and targets:
            recent = tuple(islice(self.message_cache, IHAVE_MAX_IDS))
            controls.extend((target, IHave(self.topic, recent)) for target in targets)

        return controls

    def handle_graft(self, peer_id: str) -> bool:
        """Accept a graft request if the peer qualifies; return whether it joined."""
        if peer_id in self.backoff:
            return False
        peer = self.known_peers.get(peer_id)
        if (
            peer is not None
            and peer.score() >= self.config.graft_threshold
            and len(self.mesh_peers) < self.config.d_high
        ):
            self.mesh_peers.add(peer_id)
            peer.in_mesh = True
            return True
        return False

    def handle_prune(self, peer_id: str, backoff: float) -> None:
        """Remove a peer from the mesh and hold it off for ``backoff`` seconds."""
        self.mesh_peers.discard(peer_id)
        peer = self.known_peers.get(peer_id)
        if peer is not None:
            peer.in_mesh = False
        self.backoff[peer_id] = time.monotonic() + backoff

    def handle_spike(self, source: str, intensity: int) -> None:
        """React to a danger spike: max out pressure and thicken the path to its source."""
        if intensity > SPIKE_DANGER_THRESHOLD:
            self.set_pressure(MAX_PRESSURE)
            peer = self.known_peers.get(source)
            if peer is not None:
                peer.conductivity += 2.0

    def handle_control(self, peer_id: str, control: MeshControl) -> Optional[MeshControl]:
        """Apply a control message from a peer; return the reply, if any."""
        if isinstance(control, Graft):
            if self.handle_graft(peer_id):
                return None
            return Prune(self.topic, PRUNE_BACKOFF)
        if isinstance(control, Prune):
            self.handle_prune(peer_id, control.backoff)
            return None
        if isinstance(control, IHave):
            missing = tuple(m for m in control.message_ids if m not in self.message_cache)
            return IWant(missing) if missing else None
        if isinstance(control, IWant):
            return None
        raise TypeError(f"unknown mesh control: {control!r}")

    def get_forward_targets(self, is_own_message: bool) -> list[str]:
        """Own messages flood to every acceptable peer; others go to the mesh."""
        if is_own_message:
            return [
                pid
                for pid, peer in self.known_peers.items()
                if peer.score() >= self.config.graft_threshold
            ]
        return list(self.mesh_peers)

    def stats(self) -> MeshStats:
        scores = [s for _, s in self._mesh_scores()]
        min_score = math.inf
        max_score = -math.inf
        for s in scores:
            min_score = _fmin(min_score, s)
            max_score = _fmax(max_score, s)
        return MeshStats(
            mesh_size=len(self.mesh_peers),
            known_peers=len(self.known_peers),
            median_score=self.mesh_median_score(),
            min_score=min_score,
            max_score=max_score,
            messages_cached=len(self.message_cache),
            duplicate_count=self.duplicate_count,
            backoff_count=len(self.backoff),
        )