# hypha

Energy-aware coordination primitives for peer-to-peer nodes. Nodes advertise
how much energy they have, keep a gossip mesh that favours healthy peers, and
bid on tasks only when they can afford to. Everything runs in-process, so the
mesh and the bidding logic can be driven directly from simulations and tests.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `hypha.metabolism`: energy accounting behind the `Metabolism` interface.
  `BatteryMetabolism` models a 2500 mAh battery by voltage and remaining
  charge (a mains-powered battery always scores 1.0); `MockMetabolism` has an
  energy score you set directly. `PowerMode` (`NORMAL`, `LOW_BATTERY`,
  `CRITICAL`) resets a battery to a fixed profile.
- `hypha.agent`: `Capability` (a `CapabilityKind` of compute, storage or
  sensing plus its value), `Task`, `Bid` and `EnergyStatus`. `Capability`,
  `Task` and `EnergyStatus` have `to_json` / `from_json`, which accept text,
  bytes or a mapping and raise `ValueError` on malformed input.
  `Task.diffuse(conductivity, neighbor_energy, neighbor_pressure)` returns how
  much of a task's reach passes to a neighbour.
- `hypha.sensor`: the `VirtualSensor` interface and `BasicSensor`, which
  reports the last value given to `update_from_mesh`.
- `hypha.capabilities`: `HyphaScope` (`hypha://<node>/<resource>`, parsed by
  `HyphaScope.from_url`), `HyphaAbility` (`hypha/execute`, `hypha/store`,
  `hypha/sense`, `hypha/admin`, parsed by `HyphaAbility.parse`) and
  `HyphaSemantics`, whose `parse_scope` / `parse_action` return `None`
  instead of raising.
- `hypha.mesh`: `TopicMesh`, a gossipsub-style mesh for one topic. Peers are
  scored by energy, activity, path conductivity and pressure
  (`MeshPeer.score`). `heartbeat()` prunes weak peers, keeps the mesh between
  the `MeshConfig` bounds `d_low` and `d_high`, grafts opportunistically,
  swaps the weakest member for a clearly better candidate, applies backoff,
  and returns the `Graft`, `Prune` and `IHave` messages to send as
  `(peer_id, control)` pairs. `handle_control` answers incoming controls,
  `handle_spike` reacts to danger spikes, `tick_pulse` / `align_pulse` drive
  the pulse phase, and `stats()` returns a `MeshStats` snapshot.
  `MeshConfig.adaptive(energy_score)` shrinks the mesh for low-energy nodes.
- `hypha.eval`: evaluation metrics. `MetricsCollector` records publishes,
  deliveries, energy snapshots, divergence samples and faults, and
  `finalize(scenario, mah_consumed)` turns them into an `EvalRun`.
  `DeliveryMetrics` gives the delivery rate, latency percentiles
  (`p50`, `p90`, `p99`, `p999`) and a CDF; `EnergyMetrics` gives an
  efficiency ratio and the Gini coefficient of final energy scores;
  `ConsistencyMetrics.state_size_entropy` computes the entropy of node state
  sizes. `EvalScenario` has presets (`baseline`, `percolation_sweep`,
  `degradation_attack`, `partition_test`, `cold_boot_attack`) with fault
  schedules built from `Partition`, `NodeCrash`, `Degradation`,
  `PartitionHeal`, `NodeRecover` and `SyncSpike`. `EvalSummary.from_runs`
  aggregates several runs.
- `hypha.mycelium`: `NetProfile`, the topic names, and the `Spike` alert
  message with JSON round trips.
- `hypha.store`: `NodeStore`, a key-value store kept in an SQLite file
  (`hypha.db`) inside a directory, which also generates and keeps the node's
  Ed25519 signing key; `derive_peer_id` turns that key into a base58 peer id.
- `hypha.node`: `SporeNode`, which ties these together: identity, energy,
  capabilities, sensors, a `TopicMesh`, a `MetricsCollector`, persisted
  messages, task bidding (`evaluate_task`, `process_task_bundle`), an
  energy- and pressure-dependent `heartbeat_interval`, and
  `trigger_sync_spike`.

## Example

```python
from hypha.agent import Capability, CapabilityKind, Task
from hypha.metabolism import MockMetabolism
from hypha.node import SporeNode

with SporeNode("/tmp/spore-a", metabolism=MockMetabolism(1.0, False)) as node:
    node.add_capability(Capability(CapabilityKind.COMPUTE, 100))
    task = Task.new("compute-task", Capability(CapabilityKind.COMPUTE, 100), 1, "origin")

    print(node.evaluate_task(task, 0))      # a Bid at full energy

    node.simulate_receive("m1", b"hello")
    print(node.message_count(), node.message_ids())   # 1 ['msg_m1']
    print(node.get_message("m1"))                     # b'hello'
    print(node.heartbeat_interval())                  # 0:00:01
```

A node's identity lives in its storage directory: opening a `SporeNode` on
the same path again gives the same peer id and the stored messages.

## What this package does not do

- It has no network transport. Nothing here opens sockets, dials peers or
  publishes on topics; `TopicMesh.heartbeat` and `SporeNode.trigger_sync_spike`
  return the messages to send, and delivering them is up to the caller.
- It has no long-running node loop and no command-line program.
- It does not synchronise shared documents between nodes.
- It does not run compute tasks; tasks are only bid on.
- `SporeNode.validate_ucan` is not an authorization check: it accepts any
  non-empty token containing `auth-valid` and verifies no signature.