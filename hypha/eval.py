"""Evaluation metrics for mesh runs: delivery, latency, energy and convergence.

Runs are scored on delivery rate, latency percentiles and CDF, convergence
time, energy spent per delivery and time to recover from injected faults.
"""

from __future__ import annotations

import math
import time
from collections import Counter
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Optional, Union

_MICROSECOND = timedelta(microseconds=1)
EXHAUSTED_SCORE = 0.1


def _micros(duration: timedelta) -> int:
    return duration // _MICROSECOND


def _round_half_away(x: float) -> float:
    return math.floor(x + 0.5) if x >= 0 else math.ceil(x - 0.5)


@dataclass
class DeliveryMetrics:
    """Counts of published and delivered messages and their latencies."""

    messages_published: int = 0
    messages_delivered: int = 0
    expected_deliveries: int = 0
    latencies_us: list[int] = field(default_factory=list)

    def delivery_rate(self) -> float:
        """Fraction of expected deliveries achieved, capped at 1.0."""
        if self.expected_deliveries == 0:
            return 0.0
        return min(self.messages_delivered / self.expected_deliveries, 1.0)

    def percentile(self, p: float) -> Optional[timedelta]:
        """Return the latency at percentile ``p`` (0-100), or None without samples."""
        if not self.latencies_us:
            return None
        ordered = sorted(self.latencies_us)
        position = (p / 100.0) * (len(ordered) - 1)
        idx = 0 if math.isnan(position) else max(0, int(_round_half_away(position)))
        if idx >= len(ordered):
            raise IndexError(f"percentile {p} is out of range")
        return timedelta(microseconds=ordered[idx])

    def p50(self) -> Optional[timedelta]:
        return self.percentile(50.0)

    def p90(self) -> Optional[timedelta]:
        return self.percentile(90.0)

    def p99(self) -> Optional[timedelta]:
        return self.percentile(99.0)

    def p999(self) -> Optional[timedelta]:
        return self.percentile(99.9)

    def cdf(self, buckets: int) -> list[tuple[int, float]]:
        """Return ``(threshold_us, cumulative_fraction)`` pairs over equal buckets."""
        if not self.latencies_us:
            return []
        if buckets <= 0:
            raise ValueError("buckets must be positive")
        ordered = sorted(self.latencies_us)
        step = max(ordered[-1] // buckets, 1)
        n = len(ordered)
        thresholds = ((i + 1) * step for i in range(buckets))
        return [(t, sum(1 for x in ordered if x <= t) / n) for t in thresholds]


@dataclass
class EnergyMetrics:
    """Energy spent during a run and how it is spread across nodes."""

    total_mah_consumed: float = 0.0
    mah_per_delivery: float = 0.0
    nodes_exhausted: int = 0
    final_energy_scores: list[float] = field(default_factory=list)

    def efficiency_ratio(self) -> float:
        """Deliveries per mAh; higher is better."""
        if self.total_mah_consumed == 0.0:
            return 0.0
        per_delivery = self.mah_per_delivery
        if math.isnan(per_delivery) or per_delivery < 0.001:
            per_delivery = 0.001
        return 1.0 / per_delivery

    def energy_gini(self) -> float:
        """Gini coefficient of final energy scores: 0 is equal, 1 maximally unequal."""
        scores = self.final_energy_scores
        if not scores:
            return 0.0
        n = len(scores)
        mean = sum(scores) / n
        if mean == 0.0:
            return 0.0
        sum_diff = sum(abs(xi - xj) for xi in scores for xj in scores)
        return sum_diff / (2.0 * n * n * mean)


@dataclass
class ConsistencyMetrics:
    """How far node states diverged and whether they converged."""

    convergence_time: Optional[timedelta] = None
    reconciliation_rounds: int = 0
    max_divergence: int = 0
    final_divergence_ln: float = 0.0
    """Natural log of the final divergence, 0 if converged (not an entropy)."""

    def converged(self) -> bool:
        return self.convergence_time is not None

    @staticmethod
    def state_size_entropy(node_message_counts: Iterable[int]) -> float:
        """Shannon entropy (bits) of the histogram of node state sizes."""
        freq = Counter(node_message_counts)
        n = sum(freq.values())
        if n == 0:
            return 0.0
        entropy = 0.0
        for count in freq.values():
            p = count / n
            entropy -= p * math.log2(p)
        return entropy


@dataclass(frozen=True)
class Partition:
    """The network splits between two groups of nodes."""

    group_a: tuple[str, ...]
    group_b: tuple[str, ...]


@dataclass(frozen=True)
class NodeCrash:
    """Nodes stop responding."""

    node_ids: tuple[str, ...]


@dataclass(frozen=True)
class Degradation:
    """Messages are dropped with the given probability."""

    drop_probability: float


@dataclass(frozen=True)
class PartitionHeal:
    """The network heals after a partition."""


@dataclass(frozen=True)
class NodeRecover:
    """Crashed nodes come back."""

    node_ids: tuple[str, ...]


@dataclass(frozen=True)
class SyncSpike:
    """A network-wide synchrony spike."""

    intensity: int


FaultType = Union[Partition, NodeCrash, Degradation, PartitionHeal, NodeRecover, SyncSpike]


@dataclass(frozen=True)
class FaultEvent:
    """A fault injected at ``time`` after the start of a run."""

    time: timedelta
    fault: FaultType


@dataclass
class EvalRun:
    """Everything measured during one evaluation run."""

    scenario: str
    node_count: int
    duration: timedelta
    delivery: DeliveryMetrics
    energy: EnergyMetrics
    consistency: ConsistencyMetrics
    fault_events: list[FaultEvent]


@dataclass
class EvalScenario:
    """Configuration of an evaluation scenario."""

    name: str = "baseline"
    node_count: int = 100
    publisher_count: int = 10
    message_rate_per_sec: float = 10.0
    message_size_bytes: int = 2048
    duration: timedelta = timedelta(seconds=60)
    warmup: timedelta = timedelta(seconds=10)
    cooldown: timedelta = timedelta(seconds=10)
    fault_schedule: list[FaultEvent] = field(default_factory=list)
    low_energy_percentage: float = 0.0
    """Percentage of nodes starting with low energy."""
    sybil_ratio: float = 0.0
    """Sybil to honest node ratio; 0 means no sybils."""

    @classmethod
    def baseline(cls, node_count: int) -> "EvalScenario":
        return cls(name="baseline", node_count=node_count, publisher_count=node_count // 10)

    @classmethod
    def percolation_sweep(cls) -> list["EvalScenario"]:
        """Scenarios sweeping the share of dead nodes from 0% to 90%."""
        return [
            cls(name=f"percolation_{pct}pct_dead", low_energy_percentage=float(pct))
            for pct in range(0, 100, 10)
        ]

    @classmethod
    def degradation_attack(cls, drop_probability: float) -> "EvalScenario":
        """Messages start being dropped 20 seconds into the run."""
        return cls(
            name=f"degradation_{drop_probability * 100.0:.0f}pct",
            fault_schedule=[
                FaultEvent(timedelta(seconds=20), Degradation(drop_probability))
            ],
        )

    @classmethod
    def partition_test(cls) -> "EvalScenario":
        """The network splits in half at 20 seconds and heals at 40."""
        return cls(
            name="network_partition",
            fault_schedule=[
                FaultEvent(
                    timedelta(seconds=20),
                    Partition(
                        group_a=tuple(f"node_{i}" for i in range(50)),
                        group_b=tuple(f"node_{i}" for i in range(50, 100)),
                    ),
                ),
                FaultEvent(timedelta(seconds=40), PartitionHeal()),
            ],
        )

    @classmethod
    def cold_boot_attack(cls, sybil_ratio: float) -> "EvalScenario":
        """All nodes start together under sybil pressure, with no warmup."""
        whole = 0 if math.isnan(sybil_ratio) else max(0, int(sybil_ratio))
        return cls(
            name=f"cold_boot_{whole}x_sybil",
            sybil_ratio=sybil_ratio,
            warmup=timedelta(0),
        )


class MetricsCollector:
    """Gathers measurements while a scenario runs."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._start = clock()
        self._delivery = DeliveryMetrics()
        self._energy_samples: list[tuple[timedelta, list[float]]] = []
        self._consistency_samples: list[tuple[timedelta, int]] = []
        self._fault_events: list[FaultEvent] = []

    def _elapsed(self) -> timedelta:
        return timedelta(seconds=self._clock() - self._start)

    @property
    def delivery(self) -> DeliveryMetrics:
        return self._delivery

    def set_expected_deliveries(self, node_count: int) -> None:
        self._delivery.expected_deliveries = self._delivery.messages_published * node_count

    def record_publish(self, node_count: int) -> None:
        self._delivery.messages_published += 1
        self._delivery.expected_deliveries += node_count

    def record_delivery(self, latency: timedelta) -> None:
        self._delivery.messages_delivered += 1
        self._delivery.latencies_us.append(_micros(latency))

    def record_energy_snapshot(self, scores: Sequence[float]) -> None:
        self._energy_samples.append((self._elapsed(), list(scores)))

    def record_consistency(self, divergence_count: int) -> None:
        self._consistency_samples.append((self._elapsed(), divergence_count))

    def record_fault(self, fault: FaultType) -> None:
        self._fault_events.append(FaultEvent(self._elapsed(), fault))

    def finalize(self, scenario: EvalScenario, mah_consumed: float) -> EvalRun:
        """Summarise the collected samples into an :class:`EvalRun`."""
        final_scores = list(self._energy_samples[-1][1]) if self._energy_samples else []
        nodes_exhausted = sum(1 for s in final_scores if s < EXHAUSTED_SCORE)

        delivered = self._delivery.messages_delivered
        mah_per_delivery = mah_consumed / delivered if delivered > 0 else 0.0

        convergence_time = next(
            (t for t, div in self._consistency_samples if div == 0), None
        )
        if self._consistency_samples and self._consistency_samples[-1][1] != 0:
            final_divergence_ln = math.log(self._consistency_samples[-1][1])
        else:
            final_divergence_ln = 0.0

        return EvalRun(
            scenario=scenario.name,
            node_count=scenario.node_count,
            duration=self._elapsed(),
            delivery=replace(self._delivery, latencies_us=list(self._delivery.latencies_us)),
            energy=EnergyMetrics(
                total_mah_consumed=mah_consumed,
                mah_per_delivery=mah_per_delivery,
                nodes_exhausted=nodes_exhausted,
                final_energy_scores=final_scores,
            ),
            consistency=ConsistencyMetrics(
                convergence_time=convergence_time,
                reconciliation_rounds=len(self._consistency_samples),
                max_divergence=max((d for _, d in self._consistency_samples), default=0),
                final_divergence_ln=final_divergence_ln,
            ),
            fault_events=list(self._fault_events),
        )


@dataclass
class EvalSummary:
    """Statistics across several runs of one scenario."""

    scenario: str
    runs: int
    delivery_rate_mean: float
    delivery_rate_std: float
    p99_latency_mean_us: float
    convergence_rate: float
    energy_efficiency_mean: float
    nodes_exhausted_mean: float

    @classmethod
    def from_runs(cls, runs: Sequence[EvalRun]) -> Optional["EvalSummary"]:
        """Summarise runs; None if there are none."""
        if not runs:
            return None
        n = len(runs)

        rates = [r.delivery.delivery_rate() for r in runs]
        rate_mean = sum(rates) / n
        rate_std = math.sqrt(sum((r - rate_mean) ** 2 for r in rates) / n)

        p99s = [_micros(p) for p in (r.delivery.p99() for r in runs) if p is not None]
        p99_mean = sum(p99s) / len(p99s) if p99s else 0.0

        return cls(
            scenario=runs[0].scenario,
            runs=n,
            delivery_rate_mean=rate_mean,
            delivery_rate_std=rate_std,
            p99_latency_mean_us=float(p99_mean),
            convergence_rate=sum(1 for r in runs if r.consistency.converged()) / n,
            energy_efficiency_mean=sum(r.energy.efficiency_ratio() for r in runs) / n,
            nodes_exhausted_mean=sum(r.energy.nodes_exhausted for r in runs) / n,
        )