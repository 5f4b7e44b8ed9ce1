import math
from datetime import timedelta

import pytest

from hypha.eval import (
    ConsistencyMetrics,
    Degradation,
    DeliveryMetrics,
    EnergyMetrics,
    EvalRun,
    EvalScenario,
    EvalSummary,
    MetricsCollector,
    NodeCrash,
    Partition,
    PartitionHeal,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_percentile_calculation():
    metrics = DeliveryMetrics(latencies_us=[i * 1000 for i in range(1, 101)])
    p50 = metrics.p50() // timedelta(microseconds=1)
    assert 49_000 <= p50 <= 52_000
    p90 = metrics.p90() // timedelta(microseconds=1)
    assert 89_000 <= p90 <= 92_000
    p99 = metrics.p99() // timedelta(microseconds=1)
    assert 98_000 <= p99 <= 100_000


def test_percentile_exact_values():
    metrics = DeliveryMetrics(latencies_us=[i * 1000 for i in range(100, 0, -1)])
    assert metrics.p50() == timedelta(microseconds=51_000)
    assert metrics.p90() == timedelta(microseconds=90_000)
    assert metrics.p99() == timedelta(microseconds=99_000)
    assert metrics.p999() == timedelta(microseconds=100_000)


def test_percentile_empty_is_none():
    assert DeliveryMetrics().p50() is None


def test_delivery_rate():
    metrics = DeliveryMetrics(expected_deliveries=100, messages_delivered=95)
    assert metrics.delivery_rate() == pytest.approx(0.95, abs=0.001)


def test_delivery_rate_edge_cases():
    assert DeliveryMetrics(messages_delivered=5).delivery_rate() == 0.0
    assert DeliveryMetrics(expected_deliveries=2, messages_delivered=5).delivery_rate() == 1.0


def test_cdf():
    metrics = DeliveryMetrics(latencies_us=[4, 1, 3, 2])
    assert metrics.cdf(2) == [(2, 0.5), (4, 1.0)]
    assert DeliveryMetrics().cdf(5) == []


def test_cdf_rejects_zero_buckets():
    with pytest.raises(ValueError):
        DeliveryMetrics(latencies_us=[1]).cdf(0)


def test_energy_gini():
    metrics = EnergyMetrics(final_energy_scores=[0.5, 0.5, 0.5, 0.5])
    assert metrics.energy_gini() < 0.01
    metrics.final_energy_scores = [0.0, 0.0, 0.0, 1.0]
    assert metrics.energy_gini() > 0.5
    assert metrics.energy_gini() == pytest.approx(0.75)


def test_energy_gini_degenerate():
    assert EnergyMetrics().energy_gini() == 0.0
    assert EnergyMetrics(final_energy_scores=[0.0, 0.0]).energy_gini() == 0.0


def test_efficiency_ratio():
    assert EnergyMetrics().efficiency_ratio() == 0.0
    assert EnergyMetrics(total_mah_consumed=10.0, mah_per_delivery=0.5).efficiency_ratio() == 2.0
    assert EnergyMetrics(total_mah_consumed=10.0).efficiency_ratio() == pytest.approx(1000.0)


@pytest.mark.parametrize(
    "counts, expected",
    [([], 0.0), ([5, 5, 5], 0.0), ([1, 1, 2, 2], 1.0), ([1, 2, 3, 4], 2.0)],
)
def test_state_size_entropy(counts, expected):
    assert ConsistencyMetrics.state_size_entropy(counts) == pytest.approx(expected)


def test_converged():
    assert not ConsistencyMetrics().converged()
    assert ConsistencyMetrics(convergence_time=timedelta(seconds=1)).converged()


def test_scenario_configs():
    baseline = EvalScenario.baseline(100)
    assert baseline.publisher_count == 10
    assert baseline.name == "baseline"

    degradation = EvalScenario.degradation_attack(0.5)
    assert degradation.fault_schedule
    assert degradation.name == "degradation_50pct"
    assert degradation.fault_schedule[0].fault == Degradation(0.5)
    assert degradation.fault_schedule[0].time == timedelta(seconds=20)

    percolation = EvalScenario.percolation_sweep()
    assert len(percolation) == 10
    assert percolation[3].name == "percolation_30pct_dead"
    assert percolation[3].low_energy_percentage == 30.0


def test_partition_and_cold_boot():
    partition = EvalScenario.partition_test()
    first, second = partition.fault_schedule
    assert isinstance(first.fault, Partition)
    assert len(first.fault.group_a) == 50
    assert first.fault.group_b[0] == "node_50"
    assert second.fault == PartitionHeal()
    assert second.time == timedelta(seconds=40)

    cold = EvalScenario.cold_boot_attack(3.7)
    assert cold.name == "cold_boot_3x_sybil"
    assert cold.warmup == timedelta(0)
    assert cold.sybil_ratio == 3.7


def test_default_scenario():
    scenario = EvalScenario()
    assert scenario.node_count == 100
    assert scenario.message_size_bytes == 2048
    assert scenario.duration == timedelta(seconds=60)


def test_collector_finalize():
    clock = FakeClock()
    collector = MetricsCollector(clock=clock)
    collector.record_publish(10)
    collector.record_publish(10)
    collector.record_delivery(timedelta(milliseconds=5))
    collector.record_delivery(timedelta(milliseconds=7))
    clock.now += 1.0
    collector.record_energy_snapshot([0.05, 0.5, 0.9])
    collector.record_consistency(3)
    clock.now += 1.0
    collector.record_consistency(0)
    collector.record_fault(NodeCrash(("node_1",)))
    clock.now += 1.0
    collector.record_consistency(2)

    run = collector.finalize(EvalScenario.baseline(10), 10.0)
    assert run.scenario == "baseline"
    assert run.node_count == 10
    assert run.duration == timedelta(seconds=3)
    assert run.delivery.expected_deliveries == 20
    assert run.delivery.latencies_us == [5000, 7000]
    assert run.energy.mah_per_delivery == 5.0
    assert run.energy.nodes_exhausted == 1
    assert run.consistency.convergence_time == timedelta(seconds=2)
    assert run.consistency.reconciliation_rounds == 3
    assert run.consistency.max_divergence == 3
    assert run.consistency.final_divergence_ln == pytest.approx(math.log(2))
    assert run.fault_events[0].time == timedelta(seconds=2)


def test_collector_empty_finalize():
    run = MetricsCollector(clock=FakeClock()).finalize(EvalScenario(), 5.0)
    assert run.energy.mah_per_delivery == 0.0
    assert run.energy.final_energy_scores == []
    assert not run.consistency.converged()
    assert run.consistency.final_divergence_ln == 0.0


def test_set_expected_deliveries():
    collector = MetricsCollector(clock=FakeClock())
    for _ in range(3):
        collector.record_publish(1)
    collector.set_expected_deliveries(7)
    assert collector.delivery.expected_deliveries == 21


def _run(delivered, latencies, converged, exhausted):
    return EvalRun(
        scenario="s",
        node_count=2,
        duration=timedelta(seconds=1),
        delivery=DeliveryMetrics(
            messages_delivered=delivered, expected_deliveries=10, latencies_us=latencies
        ),
        energy=EnergyMetrics(total_mah_consumed=1.0, mah_per_delivery=0.5, nodes_exhausted=exhausted),
        consistency=ConsistencyMetrics(
            convergence_time=timedelta(seconds=1) if converged else None
        ),
        fault_events=[],
    )


def test_summary_from_runs():
    summary = EvalSummary.from_runs(
        [_run(10, [100], True, 1), _run(5, [], False, 3)]
    )
    assert summary.runs == 2
    assert summary.scenario == "s"
    assert summary.delivery_rate_mean == pytest.approx(0.75)
    assert summary.delivery_rate_std == pytest.approx(0.25)
    assert summary.p99_latency_mean_us == 100.0
    assert summary.convergence_rate == 0.5
    assert summary.energy_efficiency_mean == pytest.approx(2.0)
    assert summary.nodes_exhausted_mean == 2.0


def test_summary_empty():
    assert EvalSummary.from_runs([]) is None