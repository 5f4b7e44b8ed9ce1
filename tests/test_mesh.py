import math

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from hypha.mesh import (
    Graft,
    IHave,
    IWant,
    MeshConfig,
    MeshPeer,
    Prune,
    TopicMesh,
)


def make_mesh(config=None):
    return TopicMesh("test", config if config is not None else MeshConfig())


def test_mesh_graft_below_d_low():
    mesh = make_mesh()
    for i in range(10):
        mesh.add_peer(f"peer-{i}", 0.5 + i * 0.05)
    assert mesh.mesh_size() == 0
    mesh.heartbeat()
    assert mesh.mesh_size() >= mesh.config.d_low


def test_mesh_prune_above_d_high():
    mesh = make_mesh()
    for i in range(15):
        pid = f"peer-{i}"
        mesh.add_peer(pid, 0.5)
        mesh.mesh_peers.add(pid)
    assert mesh.mesh_size() == 15
    mesh.heartbeat()
    assert mesh.mesh_size() <= mesh.config.d_high


def test_opportunistic_grafting():
    config = MeshConfig(d=6, d_low=4, d_high=12, opportunistic_graft_threshold=0.5)
    mesh = make_mesh(config)
    for i in range(6):
        pid = f"low-{i}"
        mesh.add_peer(pid, 0.2)
        mesh.mesh_peers.add(pid)
    for i in range(4):
        mesh.add_peer(f"high-{i}", 0.8)
    assert mesh.mesh_median_score() < 0.5
    mesh.heartbeat()
    assert any(pid.startswith("high") for pid in mesh.mesh_peers)


def test_phase_alignment():
    mesh_a = make_mesh()
    mesh_b = make_mesh()
    mesh_a.pulse_phase = 0.1
    mesh_b.pulse_phase = 0.9
    mesh_a.align_pulse(mesh_b.pulse_phase, 0.5)
    d = abs(mesh_a.pulse_phase - mesh_b.pulse_phase)
    diff_after = 1.0 - d if d > 0.5 else d
    assert diff_after < 0.2
    assert mesh_a.pulse_phase == pytest.approx(0.0, abs=1e-9)


def test_tick_pulse_wraps():
    mesh = make_mesh()
    mesh.pulse_phase = 0.9
    mesh.tick_pulse(0.3)
    assert mesh.pulse_phase == pytest.approx(0.2)


def test_spike_handling():
    mesh = make_mesh()
    mesh.add_peer("danger-node", 0.5)
    initial = mesh.known_peers["danger-node"].conductivity
    mesh.handle_spike("danger-node", 255)
    assert mesh.local_pressure == 10.0
    assert mesh.known_peers["danger-node"].conductivity >= initial + 2.0


def test_weak_spike_is_ignored():
    mesh = make_mesh()
    mesh.add_peer("n", 0.5)
    mesh.handle_spike("n", 200)
    assert mesh.local_pressure == 0.0
    assert mesh.known_peers["n"].conductivity == 1.0


def test_mesh_config_adaptive():
    normal = MeshConfig.adaptive(1.0)
    assert (normal.d, normal.d_high) == (6, 12)
    low = MeshConfig.adaptive(0.4)
    assert (low.d, low.d_high) == (4, 8)
    crit = MeshConfig.adaptive(0.1)
    assert (crit.d, crit.d_high) == (2, 4)


def test_topic_mesh_pressure_updates():
    mesh = make_mesh()
    mesh.set_pressure(5.0)
    assert mesh.local_pressure == 5.0
    mesh.add_peer("peer-1", 1.0)
    mesh.update_peer_pressure("peer-1", 8.0)
    peer = mesh.known_peers["peer-1"]
    assert peer.pressure == 8.0
    assert peer.score() < 0.5


def test_fresh_peer_score():
    assert MeshPeer("p", 1.0).score() == pytest.approx(0.3 + 0.06 + 0.2)


def test_update_peer_score_inserts_peer():
    mesh = make_mesh()
    assert len(mesh.known_peers) == 0
    mesh.update_peer_score("peer-a", 0.7)
    assert "peer-a" in mesh.known_peers
    assert abs(mesh.known_peers["peer-a"].energy_score - 0.7) < 1e-6


def test_add_peer_keeps_existing():
    mesh = make_mesh()
    mesh.add_peer("p", 0.3)
    mesh.add_peer("p", 0.9)
    assert mesh.known_peers["p"].energy_score == 0.3


def test_conductivity_thickens_then_decays():
    mesh = make_mesh()
    mesh.add_peer("peer-a", 0.8)
    mesh.set_pressure(10.0)
    mesh.update_peer_pressure("peer-a", 0.0)
    c0 = mesh.known_peers["peer-a"].conductivity
    mesh.record_message("peer-a", "m1")
    c1 = mesh.known_peers["peer-a"].conductivity
    assert c1 > c0
    mesh.heartbeat()
    c2 = mesh.known_peers["peer-a"].conductivity
    assert c2 < c1
    assert c2 >= 0.5


def test_prune_excess_prefers_removing_low_score():
    mesh = make_mesh()
    mesh.add_peer("good", 0.9)
    mesh.add_peer("bad", 0.1)
    mesh.update_peer_pressure("bad", 10.0)
    mesh.mesh_peers.update({"good", "bad"})
    for i in range(20):
        pid = f"peer-{i}"
        mesh.add_peer(pid, 0.6)
        mesh.mesh_peers.add(pid)
    assert len(mesh.mesh_peers) > mesh.config.d_high
    mesh.heartbeat()
    assert "bad" not in mesh.mesh_peers


def test_duplicate_count_increments_on_replay():
    mesh = make_mesh()
    mesh.add_peer("peer-a", 0.8)
    assert mesh.duplicate_count == 0
    mesh.record_message("peer-a", "m1")
    assert mesh.duplicate_count == 0
    mesh.record_message("peer-a", "m1")
    assert mesh.duplicate_count == 1
    mesh.record_message("peer-a", "m1")
    assert mesh.duplicate_count == 2


def test_backoff_blocks_graft_immediately():
    mesh = make_mesh()
    mesh.add_peer("peer-a", 0.9)
    mesh.mesh_peers.add("peer-a")
    mesh.handle_prune("peer-a", 60.0)
    assert "peer-a" not in mesh.mesh_peers
    assert "peer-a" in mesh.backoff
    assert mesh.handle_graft("peer-a") is False
    assert "peer-a" not in mesh.mesh_peers


def test_heartbeat_never_panics_on_nan_energy_scores():
    mesh = make_mesh()
    mesh.add_peer("ok-0", 0.6)
    mesh.add_peer("ok-1", 0.7)
    mesh.add_peer("nan", math.nan)
    mesh.mesh_peers.update({"ok-0", "ok-1", "nan"})
    for i in range(25):
        pid = f"peer-{i}"
        mesh.add_peer(pid, 0.55)
        mesh.mesh_peers.add(pid)
    mesh.heartbeat()
    assert len(mesh.mesh_peers) <= mesh.config.d_high


def test_heartbeat_sends_ihave_to_non_mesh_peers():
    mesh = make_mesh(MeshConfig(d_low=1, d_high=1, d_lazy=6))
    mesh.record_message("unknown", "m1")
    for pid in ("a", "b", "c"):
        mesh.add_peer(pid, 0.5)
    controls = mesh.heartbeat()
    grafts = [pid for pid, c in controls if isinstance(c, Graft)]
    ihaves = {pid: c for pid, c in controls if isinstance(c, IHave)}
    assert len(grafts) == 1
    assert set(ihaves) == {"a", "b", "c"} - set(grafts)
    assert all(c.message_ids == ("m1",) and c.topic == "test" for c in ihaves.values())


def test_heartbeat_prunes_unknown_mesh_peer_with_backoff():
    mesh = make_mesh()
    mesh.mesh_peers.add("ghost")
    controls = mesh.heartbeat()
    assert ("ghost", Prune("test", 60.0)) in controls
    assert "ghost" in mesh.backoff
    assert "ghost" not in mesh.mesh_peers


def test_handle_control_graft_accept_and_reject():
    mesh = make_mesh()
    mesh.add_peer("p", 0.9)
    assert mesh.handle_control("p", Graft("test")) is None
    assert "p" in mesh.mesh_peers
    assert mesh.known_peers["p"].in_mesh
    assert mesh.handle_control("stranger", Graft("test")) == Prune("test", 60.0)


def test_handle_control_prune_and_ihave():
    mesh = make_mesh()
    mesh.add_peer("p", 0.9)
    mesh.mesh_peers.add("p")
    assert mesh.handle_control("p", Prune("test", 10.0)) is None
    assert "p" not in mesh.mesh_peers
    mesh.record_message("p", "have")
    reply = mesh.handle_control("p", IHave("test", ("have", "need")))
    assert reply == IWant(("need",))
    assert mesh.handle_control("p", IHave("test", ("have",))) is None
    assert mesh.handle_control("p", IWant(("x",))) is None


def test_handle_control_rejects_unknown_message():
    with pytest.raises(TypeError):
        make_mesh().handle_control("p", "graft")


def test_forward_targets():
    mesh = make_mesh()
    mesh.add_peer("a", 0.9)
    mesh.add_peer("b", 0.5)
    mesh.mesh_peers.add("a")
    assert sorted(mesh.get_forward_targets(True)) == ["a", "b"]
    assert mesh.get_forward_targets(False) == ["a"]


def test_stats():
    mesh = make_mesh()
    empty = mesh.stats()
    assert empty.mesh_size == 0
    assert empty.min_score == math.inf
    assert empty.max_score == -math.inf
    assert empty.median_score == 0.0
    mesh.add_peer("a", 1.0)
    mesh.add_peer("b", 0.0)
    mesh.mesh_peers.update({"a", "b"})
    mesh.record_message("a", "m")
    mesh.record_message("a", "m")
    stats = mesh.stats()
    assert stats.mesh_size == 2
    assert stats.known_peers == 2
    assert stats.messages_cached == 1
    assert stats.duplicate_count == 1
    assert stats.min_score == pytest.approx(mesh.known_peers["b"].score())
    assert stats.max_score == pytest.approx(mesh.known_peers["a"].score())


@settings(max_examples=100, deadline=None)
@given(
    st.lists(
        st.tuples(
            st.integers(min_value=0, max_value=4),
            st.from_regex(r"[a-z]{1,5}", fullmatch=True),
            st.floats(min_value=0.0, max_value=1.0, exclude_max=True),
        ),
        min_size=1,
        max_size=50,
    )
)
def test_topic_mesh_state_machine_fuzz(ops):
    mesh = TopicMesh("fuzz", MeshConfig())
    for op, pid, val in ops:
        if op == 0:
            mesh.heartbeat()
        elif op == 1:
            mesh.handle_control(pid, Graft("fuzz"))
        elif op == 2:
            mesh.handle_control(pid, Prune("fuzz", 10.0))
        elif op == 3:
            mesh.handle_spike(pid, int(val * 255.0))
        else:
            mesh.add_peer(pid, val)

        for peer in mesh.mesh_peers:
            assert peer not in mesh.backoff
            assert peer in mesh.known_peers
            assert mesh.known_peers[peer].in_mesh
        assert not math.isnan(mesh.local_pressure)