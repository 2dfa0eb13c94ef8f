# src/calotruth/truth/assemble.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from calotruth.config.schemas import SelectionCfg
from calotruth.physics.tracks import SimTrack
from calotruth.truth.diagnostics import TruthDiagnostics
from calotruth.truth.graph import DecayEdge, DecayGraph
from calotruth.truth.hit_index import HitIndex

@dataclass(slots=True)
class SimCluster:
    """
    Hits of one simulated particle.

    hit_indices point into the event-wide hit array. cell_energy holds the
    particle's deposited energy per cell; fractions is filled at the end of
    the event with cell_energy / total energy of that cell.
    """
    track: SimTrack
    hit_indices: List[int]
    cell_energy: Dict[int, float]
    fractions: Dict[int, float] = field(default_factory=dict)

    @property
    def track_id(self) -> int:
        return self.track.track_id

    @property
    def energy(self) -> float:
        return float(sum(self.cell_energy.values()))

    @property
    def n_hits(self) -> int:
        return len(self.hit_indices)


@dataclass(slots=True)
class CaloParticle:
    """
    Primary particle promoted to truth; owns sim clusters [sc_start, sc_stop).
    """
    track: SimTrack
    sc_start: int
    sc_stop: int
    cumulative_hits: int = 0

    @property
    def track_id(self) -> int:
        return self.track.track_id

    @property
    def cluster_indices(self) -> range:
        return range(self.sc_start, self.sc_stop)

    @property
    def n_clusters(self) -> int:
        return self.sc_stop - self.sc_start


def rejection_reason(edge: DecayEdge, sel: SelectionCfg, *, signal: bool = True) -> Optional[str]:
    """
    Return why a primary edge is not a calo particle, or None if it is.
    """
    t = edge.track
    if edge.cumulative_hits == 0:
        return "no_hits"
    if sel.require_gen_particle and not t.gen_particle:
        return "no_gen_particle"
    if not (t.energy >= 0.0 and t.energy >= sel.min_energy):
        return "low_energy"
    if abs(t.eta) > sel.max_pseudorapidity:
        return "high_eta"
    if sel.charged_only and not t.is_charged:
        return "neutral"
    if sel.signal_only and not signal:
        return "pileup"
    return None


def assemble_collections(
    graph: DecayGraph,
    index: HitIndex,
    selection: SelectionCfg | None = None,
    *,
    cluster_offset: int = 0,
    signal: bool = True,
    diag: TruthDiagnostics | None = None,
    diagnostics_level: int = 0,
) -> Tuple[List[SimCluster], List[CaloParticle]]:
    """
    Walk an annotated graph and emit sim clusters and calo particles.

    Every edge leaving a root vertex is a calo-particle candidate. For a
    selected candidate its subtree is walked depth-first (parent before
    children, children in insertion order) and one SimCluster is emitted per
    track with at least one hit; the candidate's [sc_start, sc_stop) covers
    exactly those clusters. Rejected candidates emit nothing.

    cluster_offset is the number of clusters already produced earlier in the
    event, so ranges are event-wide indices.
    """
    if selection is None:
        selection = SelectionCfg()
    if diag is None:
        diag = TruthDiagnostics()
    clusters: List[SimCluster] = []
    calo: List[CaloParticle] = []

    for root in graph.roots():
        for ei in graph.out_edges[root]:
            cand = graph.edges[ei]
            diag.candidates += 1
            reason = rejection_reason(cand, selection, signal=signal)
            if reason is not None:
                diag.inc(reason)
                if diagnostics_level >= 2:
                    print(f"[assemble] Rejected track {cand.track.track_id}: {reason}")
                continue

            start = cluster_offset + len(clusters)
            stack = [ei]
            while stack:
                e = graph.edges[stack.pop()]
                tid = e.track.track_id
                if index.n_hits(tid):
                    clusters.append(SimCluster(
                        track=e.track,
                        hit_indices=list(index.track_hits[tid]),
                        cell_energy=dict(index.track_cell_energy[tid]),
                    ))
                stack.extend(reversed(graph.out_edges[e.child]))
            stop = cluster_offset + len(clusters)
            calo.append(CaloParticle(track=cand.track, sc_start=start, sc_stop=stop,
                                     cumulative_hits=cand.cumulative_hits))

    diag.sim_clusters += len(clusters)
    diag.calo_particles += len(calo)
    if diagnostics_level >= 2:
        print(f"[assemble] {len(calo)} calo particles, {len(clusters)} sim clusters "
              f"from {diag.candidates} candidates")
    return clusters, calo
