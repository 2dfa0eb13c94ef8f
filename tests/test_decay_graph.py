import numpy as np

from calotruth.physics.hits import SimHit
from calotruth.physics.tracks import SimTrack, SimVertex
from calotruth.sim.synth import synth_decay_chain_event
from calotruth.truth.diagnostics import TruthDiagnostics
from calotruth.truth.graph import NO_EDGE, VertexKind, build_decay_graph, link_stable_particles
from calotruth.truth.hit_index import build_hit_index


def _build(tracks, vertices, hits=()):
    diag = TruthDiagnostics()
    index = build_hit_index(hits, [t.track_id for t in tracks], diag=diag)
    graph = build_decay_graph(tracks, vertices, index, diag=diag)
    ghosts = link_stable_particles(graph, tracks, index, diag=diag)
    return graph, ghosts, diag


def _assert_forest(graph):
    # every vertex reaches a root by following parents, in at most |V| steps
    n = len(graph.vertices)
    for v in range(n):
        cur, steps = v, 0
        while graph.in_edge[cur] != NO_EDGE:
            cur = graph.parent_of(cur)
            steps += 1
            assert steps <= n, f"loop above vertex {v}"
    # one parent edge per non-root vertex
    children = [e.child for e in graph.edges]
    assert len(children) == len(set(children))


def test_scenario_edges_and_ghosts(scenario):
    index = build_hit_index(scenario.hit_collections()["EE"], [t.track_id for t in scenario.tracks])
    graph = build_decay_graph(scenario.tracks, scenario.vertices, index)
    assert [(e.parent, e.child, e.track.track_id, e.hits) for e in graph.edges] == [(0, 1, 1, 10)]
    assert graph.vertices[1].track.track_id == 1
    assert graph.vertices[0].track is None

    ghosts = link_stable_particles(graph, scenario.tracks, index)
    assert ghosts == [2, 3]
    assert all(graph.vertices[g].kind is VertexKind.GHOST for g in ghosts)
    assert all(graph.vertices[g].track is None for g in ghosts)
    assert [(e.parent, e.child, e.track.track_id, e.hits) for e in graph.edges[1:]] == [
        (1, 2, 2, 5),
        (1, 3, 3, 0),
    ]
    assert graph.roots() == [0]
    _assert_forest(graph)


def test_zero_hit_track_keeps_its_edge():
    vertices = [SimVertex(0, parent_track=-1), SimVertex(1, parent_track=1)]
    tracks = [SimTrack(1, vertex_index=0), SimTrack(2, vertex_index=1)]
    hits = [SimHit(cell_id=1, energy=0.1, track_id=2)]
    graph, _, _ = _build(tracks, vertices, hits)
    first = graph.edges[0]
    assert first.track.track_id == 1 and first.hits == 0
    assert graph.out_edges[first.child]  # its descendant is still attached


def test_out_of_range_production_vertex_is_skipped_once():
    vertices = [SimVertex(0, parent_track=-1)]
    tracks = [
        SimTrack(1, vertex_index=0),
        SimTrack(2, vertex_index=7),
        SimTrack(3, vertex_index=-1),
    ]
    graph, ghosts, diag = _build(tracks, vertices)
    assert [graph.edges[graph.in_edge[g]].track.track_id for g in ghosts] == [1]
    assert diag.malformed_references == 2
    assert list(diag.warnings) == ["malformed_reference"]


def test_vertex_with_unknown_parent_track():
    vertices = [SimVertex(0, parent_track=-1), SimVertex(1, parent_track=42)]
    tracks = [SimTrack(1, vertex_index=0), SimTrack(2, vertex_index=1)]
    graph, ghosts, diag = _build(tracks, vertices)
    assert diag.malformed_references == 1
    # vertex 1 is left without a parent, its stable child still hangs off it
    assert graph.in_edge[1] == NO_EDGE
    assert graph.roots() == [0, 1]
    assert len(ghosts) == 2
    _assert_forest(graph)


def test_loop_is_rejected():
    vertices = [
        SimVertex(0, parent_track=-1),
        SimVertex(1, parent_track=1),
        SimVertex(2, parent_track=2),
    ]
    # 1 ends at vertex 1 but is produced at 2; 2 ends at 2 and is produced at 1
    tracks = [SimTrack(1, vertex_index=2), SimTrack(2, vertex_index=1)]
    graph, ghosts, diag = _build(tracks, vertices)
    assert len(graph.edges) == 1
    assert diag.malformed_references == 1
    assert ghosts == []
    _assert_forest(graph)


def test_self_loop_is_rejected():
    vertices = [SimVertex(0, parent_track=-1), SimVertex(1, parent_track=1)]
    tracks = [SimTrack(1, vertex_index=1)]
    graph, _, diag = _build(tracks, vertices)
    assert graph.edges == []
    assert diag.malformed_references == 1


def test_second_decay_vertex_is_collapsed():
    vertices = [
        SimVertex(0, parent_track=-1),
        SimVertex(1, parent_track=1),
        SimVertex(2, parent_track=1),
    ]
    tracks = [
        SimTrack(1, vertex_index=0),
        SimTrack(2, vertex_index=2),  # produced at the collapsed vertex
        SimTrack(3, vertex_index=1),
    ]
    graph, ghosts, diag = _build(tracks, vertices)
    assert graph.collapsed == {2: 1}
    assert graph.vertices[2].collapsed_into == 1
    assert diag.collapsed_vertices == 1
    assert sorted(graph.edges[graph.in_edge[g]].parent for g in ghosts) == [1, 1]
    assert graph.out_edges[2] == []
    _assert_forest(graph)


def test_ghost_indices_follow_real_vertices():
    rng = np.random.default_rng(7)
    for _ in range(5):
        sub = synth_decay_chain_event(n_primaries=4, max_depth=4, rng=rng)
        graph, ghosts, diag = _build(sub.tracks, sub.vertices, sub.hit_collections()["EE"])
        n_real = len(sub.vertices)
        assert graph.n_real == n_real
        assert ghosts == list(range(n_real, n_real + len(ghosts)))
        assert len(set(ghosts)) == len(ghosts)
        # every track is an edge exactly once in a well-formed event
        assert sorted(e.track.track_id for e in graph.edges) == sorted(t.track_id for t in sub.tracks)
        assert diag.malformed_references == 0
        _assert_forest(graph)
