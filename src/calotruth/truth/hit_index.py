# src/calotruth/truth/hit_index.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from calotruth.physics.hits import SimHit
from calotruth.truth.diagnostics import TruthDiagnostics


class MissingInputError(ValueError):
    """An input collection expected for the event is entirely absent."""


@dataclass
class HitIndex:
    """
    Lookup tables built from the hits of one sub-event.

    cell_energy     : cell id -> summed deposited energy (orphans included)
    track_hits      : track id -> indices into `hits` (orphans excluded)
    track_cell_energy : track id -> {cell id -> energy}, for cluster building
    hits            : the selected hits, in index order
    offset          : index of hits[0] in the event-wide hit array
    """
    hits: List[SimHit] = field(default_factory=list)
    cell_energy: Dict[int, float] = field(default_factory=dict)
    track_hits: Dict[int, List[int]] = field(default_factory=dict)
    track_cell_energy: Dict[int, Dict[int, float]] = field(default_factory=dict)
    offset: int = 0

    def n_hits(self, track_id: int) -> int:
        """Number of hits attributed to a track, whatever their process type."""
        return len(self.track_hits.get(track_id, ()))

    def own_hits(self, track_id: int) -> int:
        """
        Hits counted toward a track's graph weight: only those sharing the
        process type of the track's first hit.
        """
        idx = self.track_hits.get(track_id)
        if not idx:
            return 0
        ref = self.hits[idx[0] - self.offset].process_type
        return sum(1 for i in idx if self.hits[i - self.offset].process_type == ref)


def select_hit_collections(
    collections: Optional[Mapping[str, Sequence[SimHit]]],
    wanted: Sequence[str],
    *,
    strict: bool = True,
) -> List[SimHit]:
    """
    Concatenate the selected hit collections.

    An empty `wanted` selects every collection, in sorted name order.
    With strict=True a configured collection that is absent from the input
    raises MissingInputError.
    """
    if collections is None:
        raise MissingInputError("hit collections are missing from the event")
    names = list(wanted) if wanted else sorted(collections)
    out: List[SimHit] = []
    for name in names:
        if name not in collections:
            if strict:
                raise MissingInputError(f"hit collection {name!r} not found in event")
            continue
        out.extend(collections[name])
    return out


def build_hit_index(
    hits: Iterable[SimHit],
    known_tracks: Iterable[int],
    *,
    offset: int = 0,
    diag: TruthDiagnostics | None = None,
    diagnostics_level: int = 0,
) -> HitIndex:
    """
    Index the selected hits of one sub-event.

    Hits whose track id is not among `known_tracks` still add to the cell
    energy totals but are left out of every per-track table. They are
    counted in diag.orphan_hits with a single warning per event.
    """
    if diag is None:
        diag = TruthDiagnostics()
    known = set(known_tracks)
    index = HitIndex(offset=offset)

    for j, h in enumerate(hits):
        i = offset + j
        index.hits.append(h)
        index.cell_energy[h.cell_id] = index.cell_energy.get(h.cell_id, 0.0) + h.energy
        if h.track_id not in known:
            diag.orphan_hits += 1
            diag.warn(
                "orphan_hits",
                f"hit {i} references track {h.track_id} which is not in the event",
                verbose=diagnostics_level >= 1,
            )
            continue
        index.track_hits.setdefault(h.track_id, []).append(i)
        cells = index.track_cell_energy.setdefault(h.track_id, {})
        cells[h.cell_id] = cells.get(h.cell_id, 0.0) + h.energy

    for tid, idx in index.track_hits.items():
        diag.unmatched_process_hits += len(idx) - index.own_hits(tid)
    diag.hits += len(index.hits)
    if diagnostics_level >= 2:
        print(f"[hits] Indexed {len(index.hits)} hits in {len(index.cell_energy)} cells "
              f"for {len(index.track_hits)} tracks ({diag.orphan_hits} orphan)")
    return index
