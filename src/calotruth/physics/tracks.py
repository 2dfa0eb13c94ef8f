# src/calotruth/physics/tracks.py
from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np

from .hits import SimHit

@dataclass(slots=True)
class SimTrack:
    """
    One simulated particle between its production vertex and the point
    where it decays or leaves the detector.

    vertex_index is the index of the production vertex in the sub-event's
    vertex sequence (-1 when the simulation did not record one). The decay
    vertex is not stored here: it is the vertex whose parent_track points
    back at this track.
    """
    track_id: int
    vertex_index: int = -1
    charge: float = 0.0
    process_type: int = 0
    px: float = 0.0
    py: float = 0.0
    pz: float = 0.0
    energy: float = 0.0
    pdg_id: int = 0
    gen_particle: bool = True

    @property
    def pt(self) -> float:
        return math.sqrt(self.px**2 + self.py**2)

    @property
    def eta(self) -> float:
        """Pseudorapidity; +-inf along the beam axis."""
        p = math.sqrt(self.px**2 + self.py**2 + self.pz**2)
        if p == abs(self.pz):
            return float("inf") if self.pz >= 0 else float("-inf")
        return 0.5 * math.log((p + self.pz) / (p - self.pz))

    @property
    def is_charged(self) -> bool:
        return self.charge != 0


@dataclass(slots=True)
class SimVertex:
    """
    Simulated vertex. vertex_id equals its index in the vertex sequence;
    parent_track is the track id of the particle that ended here (-1 for
    primary interaction vertices).
    """
    vertex_id: int
    position: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=float))  # (3,) [cm]
    parent_track: int = -1

    @property
    def is_primary(self) -> bool:
        return self.parent_track == -1


HitInput = Union[Sequence[SimHit], Mapping[str, Sequence[SimHit]]]


@dataclass(slots=True)
class SubEvent:
    """
    Fully materialized simulation records for one bunch crossing.

    Any of tracks / vertices / hits may be None when the source did not
    provide that collection; the accumulator rejects such sub-events.
    hits is either a flat sequence or a mapping collection -> hits.
    """
    tracks: Optional[Sequence[SimTrack]]
    vertices: Optional[Sequence[SimVertex]]
    hits: Optional[HitInput]
    bunch_crossing: int = 0
    meta: Dict[str, Any] = field(default_factory=dict)

    def hit_collections(self) -> Optional[Dict[str, Sequence[SimHit]]]:
        """
        Return hits keyed by collection name. A flat sequence is grouped on
        each hit's .collection field, keeping input order within a group.
        """
        if self.hits is None:
            return None
        if isinstance(self.hits, Mapping):
            return {str(k): list(v) for k, v in self.hits.items()}
        grouped: Dict[str, list] = {}
        for h in self.hits:
            grouped.setdefault(h.collection, []).append(h)
        return grouped
