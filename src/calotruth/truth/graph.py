"""
calotruth.truth.graph

Decay-chain graph of one sub-event, stored as an arena: vertices and edges
live in flat lists and refer to each other by integer index.

The parent-child relation follows time. A vertex is a point where a
simulated particle ended (decayed or interacted); an edge is the simulated
track connecting the vertex it was produced at to the vertex where it
ended. Particles that never ended inside the simulation are attached to
GHOST vertices appended after the last REAL vertex.

Each edge carries the number of hits of its own track (`hits`) and, once
annotated, the hits of its track plus all descendants
(`cumulative_hits`). Each vertex carries the sum of its outgoing edges'
cumulative counts.

Entry points
------------
- build_decay_graph(tracks, vertices, index): REAL vertices and decay edges.
- link_stable_particles(graph, tracks, index): GHOST leaves for stable tracks.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence

from calotruth.physics.tracks import SimTrack, SimVertex
from calotruth.truth.diagnostics import TruthDiagnostics
from calotruth.truth.hit_index import HitIndex

NO_EDGE = -1


class VertexKind(Enum):
    REAL = "real"
    GHOST = "ghost"


@dataclass(slots=True)
class GraphVertex:
    index: int
    kind: VertexKind
    sim_vertex: Optional[SimVertex] = None
    # Particle that ended at this vertex; None for primaries and ghosts.
    track: Optional[SimTrack] = None
    cumulative_hits: int = 0
    collapsed_into: int = -1

    @property
    def is_ghost(self) -> bool:
        return self.kind is VertexKind.GHOST


@dataclass(slots=True)
class DecayEdge:
    index: int
    parent: int
    child: int
    track: SimTrack
    hits: int
    cumulative_hits: int = 0


@dataclass
class DecayGraph:
    vertices: List[GraphVertex] = field(default_factory=list)
    edges: List[DecayEdge] = field(default_factory=list)
    out_edges: List[List[int]] = field(default_factory=list)
    in_edge: List[int] = field(default_factory=list)
    # track id -> vertex where that track ended
    decay_vertex: Dict[int, int] = field(default_factory=dict)
    # later decay vertices of a track -> the first one
    collapsed: Dict[int, int] = field(default_factory=dict)
    n_real: int = 0
    # union-find links; the representative of each set is the root of its tree
    _top: List[int] = field(default_factory=list, repr=False)

    @classmethod
    def from_vertices(cls, vertices: Sequence[SimVertex]) -> "DecayGraph":
        g = cls()
        for v in vertices:
            g._append_vertex(VertexKind.REAL, sim_vertex=v)
        g.n_real = len(g.vertices)
        return g

    def _append_vertex(self, kind: VertexKind, sim_vertex: Optional[SimVertex] = None) -> int:
        idx = len(self.vertices)
        self.vertices.append(GraphVertex(index=idx, kind=kind, sim_vertex=sim_vertex))
        self.out_edges.append([])
        self.in_edge.append(NO_EDGE)
        self._top.append(idx)
        return idx

    def add_ghost_vertex(self) -> int:
        """Append a GHOST vertex; indices continue after every existing vertex."""
        return self._append_vertex(VertexKind.GHOST)

    def add_edge(self, parent: int, child: int, track: SimTrack, hits: int) -> DecayEdge:
        if self.in_edge[child] != NO_EDGE:
            raise ValueError(f"vertex {child} already has a parent edge {self.in_edge[child]}")
        e = DecayEdge(index=len(self.edges), parent=parent, child=child, track=track, hits=hits)
        self.edges.append(e)
        self.out_edges[parent].append(e.index)
        self.in_edge[child] = e.index
        self._top[child] = self.tree_root(parent)
        return e

    def is_real(self, idx: int) -> bool:
        return 0 <= idx < self.n_real

    def resolve(self, idx: int) -> int:
        """Map a vertex index through the collapse table."""
        return self.collapsed.get(idx, idx)

    def parent_of(self, idx: int) -> int:
        e = self.in_edge[idx]
        return NO_EDGE if e == NO_EDGE else self.edges[e].parent

    def tree_root(self, idx: int) -> int:
        root = idx
        while self._top[root] != root:
            root = self._top[root]
        while self._top[idx] != root:
            self._top[idx], idx = root, self._top[idx]
        return root

    def closes_loop(self, parent: int, child: int) -> bool:
        """True if an edge parent -> child would make child its own ancestor."""
        return self.tree_root(parent) == child

    def roots(self) -> List[int]:
        return [v.index for v in self.vertices if self.in_edge[v.index] == NO_EDGE]

    def children(self, idx: int) -> Iterator[DecayEdge]:
        for ei in self.out_edges[idx]:
            yield self.edges[ei]

    def ghost_vertices(self) -> List[int]:
        return [v.index for v in self.vertices if v.is_ghost]


def _malformed(diag: TruthDiagnostics, message: str, diagnostics_level: int) -> None:
    diag.malformed_references += 1
    diag.warn("malformed_reference", message, verbose=diagnostics_level >= 1)


def build_decay_graph(
    tracks: Sequence[SimTrack],
    vertices: Sequence[SimVertex],
    index: HitIndex,
    *,
    diag: TruthDiagnostics | None = None,
    diagnostics_level: int = 0,
) -> DecayGraph:
    """
    Build the REAL part of the decay graph.

    A track that is the parent of several vertices keeps the first one as
    its decay vertex; the later ones are collapsed into it, so their child
    tracks hang off the first. Bad references (unknown parent track,
    production vertex out of range, an edge that would close a loop) drop
    the offending edge and record a single malformed-reference warning.
    """
    if diag is None:
        diag = TruthDiagnostics()
    graph = DecayGraph.from_vertices(vertices)
    track_by_id = {t.track_id: t for t in tracks}

    # Pass 1: decay vertex of every track that ended inside the simulation
    for v in graph.vertices:
        sv = v.sim_vertex
        if sv is None or sv.is_primary:
            continue
        t = track_by_id.get(sv.parent_track)
        if t is None:
            _malformed(diag, f"vertex {v.index} has unknown parent track {sv.parent_track}",
                       diagnostics_level)
            continue
        first = graph.decay_vertex.get(t.track_id)
        if first is not None:
            graph.collapsed[v.index] = first
            v.collapsed_into = first
            diag.collapsed_vertices += 1
            continue
        graph.decay_vertex[t.track_id] = v.index
        v.track = t

    # Pass 2: one edge per decaying track, production vertex -> decay vertex
    for track_id, child in graph.decay_vertex.items():
        t = track_by_id[track_id]
        parent = graph.resolve(t.vertex_index)
        if not graph.is_real(parent):
            _malformed(diag, f"track {track_id} has production vertex {t.vertex_index} "
                             f"outside [0, {graph.n_real})", diagnostics_level)
            continue
        if graph.closes_loop(parent, child):
            _malformed(diag, f"track {track_id} would close a loop at vertex {child}",
                       diagnostics_level)
            continue
        graph.add_edge(parent, child, t, index.own_hits(track_id))

    diag.tracks += len(tracks)
    diag.vertices += len(vertices)
    if diagnostics_level >= 2:
        print(f"[graph] {graph.n_real} vertices, {len(graph.edges)} decay edges, "
              f"{len(graph.collapsed)} collapsed")
    return graph


def link_stable_particles(
    graph: DecayGraph,
    tracks: Sequence[SimTrack],
    index: HitIndex,
    *,
    diag: TruthDiagnostics | None = None,
    diagnostics_level: int = 0,
) -> List[int]:
    """
    Give every track that never decayed a GHOST vertex of its own and a leaf
    edge from its production vertex. Returns the new ghost indices, which
    start after every vertex already in the graph.
    """
    if diag is None:
        diag = TruthDiagnostics()
    ghosts: List[int] = []
    for t in tracks:
        if t.track_id in graph.decay_vertex:
            continue
        parent = graph.resolve(t.vertex_index)
        if not graph.is_real(parent):
            _malformed(diag, f"stable track {t.track_id} has production vertex {t.vertex_index} "
                             f"outside [0, {graph.n_real})", diagnostics_level)
            continue
        g = graph.add_ghost_vertex()
        graph.add_edge(parent, g, t, index.own_hits(t.track_id))
        ghosts.append(g)

    diag.ghost_vertices += len(ghosts)
    if diagnostics_level >= 2:
        print(f"[graph] Linked {len(ghosts)} stable particles to ghost vertices")
    return ghosts
