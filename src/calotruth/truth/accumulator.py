"""
calotruth.truth.accumulator

Per-event driver for the truth graph: collects the signal sub-event and any
pileup sub-events of one event, then hands back the sim clusters and calo
particles together with the event's diagnostics.

Lifecycle
---------
    acc.initialize_event()
    acc.accumulate(signal)
    acc.accumulate_pileup(sub)        # 0..n times, by bunch crossing
    collections, diag = acc.finalize_event()

or simply ``acc.process_event(signal, pileup)``.

Each sub-event is fully processed (hit index, graph, ghost links,
annotation, assembly) on local objects and merged into the event state only
once it succeeded, so a MissingInputError leaves earlier state intact.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from calotruth.config.schemas import Config, HitsCfg, PileupCfg, SelectionCfg
from calotruth.physics.hits import SimHit
from calotruth.physics.tracks import SubEvent
from calotruth.truth.annotate import annotate_cumulative_hits
from calotruth.truth.assemble import CaloParticle, SimCluster, assemble_collections
from calotruth.truth.diagnostics import TruthDiagnostics
from calotruth.truth.graph import DecayGraph, build_decay_graph, link_stable_particles
from calotruth.truth.hit_index import MissingInputError, build_hit_index, select_hit_collections


@dataclass
class TruthCollections:
    """Output of one event."""
    hits: List[SimHit] = field(default_factory=list)
    cell_energy: Dict[int, float] = field(default_factory=dict)
    sim_clusters: List[SimCluster] = field(default_factory=list)
    calo_particles: List[CaloParticle] = field(default_factory=list)

    def clusters_of(self, cp: CaloParticle) -> List[SimCluster]:
        return self.sim_clusters[cp.sc_start:cp.sc_stop]


class CaloTruthAccumulator:
    def __init__(
        self,
        hits: HitsCfg | None = None,
        selection: SelectionCfg | None = None,
        pileup: PileupCfg | None = None,
        *,
        diagnostics_level: int = 0,
    ) -> None:
        self.hits_cfg = hits or HitsCfg()
        self.selection = selection or SelectionCfg()
        self.pileup = pileup or PileupCfg()
        self.diagnostics_level = diagnostics_level
        self.graphs: List[DecayGraph] = []
        self._active = False
        self._reset()

    @classmethod
    def from_config(cls, cfg: Config) -> "CaloTruthAccumulator":
        return cls(cfg.hits, cfg.selection, cfg.pileup,
                   diagnostics_level=cfg.run.diagnostics_level)

    def _reset(self) -> None:
        self._hits: List[SimHit] = []
        self._cell_energy: Dict[int, float] = {}
        self._clusters: List[SimCluster] = []
        self._calo: List[CaloParticle] = []
        self._diag = TruthDiagnostics()
        self._last_pileup_bx: Optional[int] = None
        self._signal_done = False
        self.graphs = []

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def initialize_event(self) -> None:
        self._reset()
        self._active = True

    def accumulate(self, event: SubEvent) -> None:
        """Add the signal sub-event; exactly once per event, before any pileup."""
        self._require_active()
        if self._signal_done:
            raise RuntimeError("the signal sub-event was already accumulated for this event")
        self._accumulate_sub_event(event, signal=True)
        self._signal_done = True

    def accumulate_pileup(self, event: SubEvent) -> bool:
        """
        Add one pileup sub-event. Sub-events outside the configured
        bunch-crossing window are skipped (returns False). Pileup must
        arrive in non-decreasing bunch-crossing order.
        """
        self._require_active()
        if not self._signal_done:
            raise RuntimeError("accumulate() the signal sub-event before adding pileup")
        bx = event.bunch_crossing
        if self._last_pileup_bx is not None and bx < self._last_pileup_bx:
            raise ValueError(
                f"pileup bunch crossing {bx} arrived after {self._last_pileup_bx}; "
                f"sub-events must be ordered by bunch crossing"
            )
        self._last_pileup_bx = bx
        if not self.pileup.in_window(bx):
            self._diag.skipped_sub_events += 1
            self._diag.inc("bx_outside_window")
            return False
        self._accumulate_sub_event(event, signal=False)
        return True

    def finalize_event(self) -> Tuple[TruthCollections, TruthDiagnostics]:
        """
        Turn per-cell energies of every cluster into fractions of the cell's
        total energy over the event and return the outputs.
        """
        self._require_active()
        diag = self._diag
        for sc in self._clusters:
            fractions: Dict[int, float] = {}
            for cell, e in sc.cell_energy.items():
                total = self._cell_energy.get(cell, 0.0)
                if total > 0:
                    fractions[cell] = e / total
                else:
                    fractions[cell] = 0.0
                    diag.zero_energy_cells += 1
                    diag.warn("zero_energy_cell",
                              f"total energy of cell {cell} is 0; fraction cannot be computed",
                              verbose=self.diagnostics_level >= 1)
            sc.fractions = fractions

        out = TruthCollections(
            hits=self._hits,
            cell_energy=self._cell_energy,
            sim_clusters=self._clusters,
            calo_particles=self._calo,
        )
        if self.diagnostics_level >= 1:
            print(f"[accumulate] Event done: {len(out.calo_particles)} calo particles, "
                  f"{len(out.sim_clusters)} sim clusters from {diag.sub_events} sub-events")
        self._active = False
        return out, diag

    def process_event(
        self,
        signal: SubEvent,
        pileup: Iterable[SubEvent] = (),
    ) -> Tuple[TruthCollections, TruthDiagnostics]:
        """Full lifecycle for one event; pileup is sorted by bunch crossing."""
        self.initialize_event()
        self.accumulate(signal)
        for sub in sorted(pileup, key=lambda s: s.bunch_crossing):
            self.accumulate_pileup(sub)
        return self.finalize_event()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _require_active(self) -> None:
        if not self._active:
            raise RuntimeError("initialize_event() must be called before accumulating an event")

    def _accumulate_sub_event(self, event: SubEvent, *, signal: bool) -> None:
        if event.tracks is None:
            raise MissingInputError("simulated tracks are missing from the event")
        if event.vertices is None:
            raise MissingInputError("simulated vertices are missing from the event")
        collections = event.hit_collections()
        hits = select_hit_collections(
            collections,
            self.hits_cfg.collections,
            strict=isinstance(event.hits, Mapping),
        )

        level = self.diagnostics_level
        local = TruthDiagnostics(warnings=dict(self._diag.warnings))
        local.sub_events = 1

        index = build_hit_index(
            hits,
            (t.track_id for t in event.tracks),
            offset=len(self._hits),
            diag=local,
            diagnostics_level=level,
        )
        graph = build_decay_graph(event.tracks, event.vertices, index,
                                  diag=local, diagnostics_level=level)
        link_stable_particles(graph, event.tracks, index, diag=local, diagnostics_level=level)
        visited = annotate_cumulative_hits(graph)
        local.unreachable_vertices += len(graph.vertices) - visited
        clusters, calo = assemble_collections(
            graph,
            index,
            self.selection,
            cluster_offset=len(self._clusters),
            signal=signal,
            diag=local,
            diagnostics_level=level,
        )

        # merge
        self._hits.extend(index.hits)
        for cell, e in index.cell_energy.items():
            self._cell_energy[cell] = self._cell_energy.get(cell, 0.0) + e
        self._clusters.extend(clusters)
        self._calo.extend(calo)
        self._diag.merge(local)
        self.graphs.append(graph)

        if level >= 2:
            kind = "signal" if signal else f"pileup bx={event.bunch_crossing}"
            print(f"[accumulate] {kind}: {len(event.tracks)} tracks, {len(event.vertices)} vertices, "
                  f"{len(index.hits)} hits -> {len(calo)} calo particles")
