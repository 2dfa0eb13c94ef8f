from __future__ import annotations
import numpy as np
from typing import List, Tuple
from ..physics.hits import SimHit
from ..physics.tracks import SimTrack, SimVertex, SubEvent

def momentum_from_E_eta_phi(E: float, eta: float, phi: float) -> Tuple[float, float, float]:
    """Massless four-momentum components (px, py, pz) for energy E."""
    pt = E / np.cosh(eta)
    return float(pt * np.cos(phi)), float(pt * np.sin(phi)), float(pt * np.sinh(eta))

def _make_track(track_id: int, vertex_index: int, E: float, rng: np.random.Generator,
                eta_max: float) -> SimTrack:
    eta = rng.uniform(-eta_max, eta_max)
    phi = rng.uniform(-np.pi, np.pi)
    px, py, pz = momentum_from_E_eta_phi(E, eta, phi)
    return SimTrack(
        track_id=track_id,
        vertex_index=vertex_index,
        charge=float(rng.choice([-1.0, 0.0, 1.0])),
        process_type=0,
        px=px, py=py, pz=pz, energy=float(E),
        pdg_id=int(rng.choice([11, 13, 22, 211, 2112])),
    )

def synth_decay_chain_event(
    n_primaries: int = 3,
    max_depth: int = 3,
    decay_prob: float = 0.5,
    hits_per_track: Tuple[int, int] = (0, 6),
    n_cells: int = 64,
    E_range_GeV: Tuple[float, float] = (1.0, 50.0),
    eta_max: float = 2.5,
    collection: str = "EE",
    bunch_crossing: int = 0,
    rng: np.random.Generator | None = None,
) -> SubEvent:
    """
    Generate a well-formed sub-event of random two-body decay chains:
      - every primary starts at vertex 0 (the primary interaction point)
      - a track decays with probability decay_prob until max_depth, giving
        one new vertex (parent_track = the track) and two children sharing
        the parent's energy
      - each track leaves a uniform number of hits in [lo, hi) random cells
    Track ids start at 1; vertex ids equal their index.
    """
    rng = rng or np.random.default_rng()
    vertices: List[SimVertex] = [SimVertex(vertex_id=0, position=np.zeros(3), parent_track=-1)]
    tracks: List[SimTrack] = []
    hits: List[SimHit] = []

    queue: List[Tuple[SimTrack, int]] = []
    for _ in range(n_primaries):
        E = rng.uniform(*E_range_GeV)
        t = _make_track(len(tracks) + 1, 0, E, rng, eta_max)
        tracks.append(t)
        queue.append((t, 0))

    while queue:
        t, depth = queue.pop(0)
        lo, hi = hits_per_track
        n_hits = int(rng.integers(lo, hi)) if hi > lo else lo
        for _ in range(n_hits):
            hits.append(SimHit(
                cell_id=int(rng.integers(0, n_cells)),
                energy=float(rng.exponential(0.05)),
                track_id=t.track_id,
                process_type=t.process_type,
                collection=collection,
            ))
        if depth >= max_depth or rng.uniform() >= decay_prob:
            continue
        # decay point a short flight away from the production vertex
        origin = vertices[t.vertex_index].position
        v = SimVertex(
            vertex_id=len(vertices),
            position=origin + rng.normal(scale=5.0, size=3),
            parent_track=t.track_id,
        )
        vertices.append(v)
        split = rng.uniform(0.2, 0.8)
        for frac in (split, 1.0 - split):
            child = _make_track(len(tracks) + 1, v.vertex_id, t.energy * frac, rng, eta_max)
            tracks.append(child)
            queue.append((child, depth + 1))

    return SubEvent(tracks=tracks, vertices=vertices, hits={collection: hits},
                    bunch_crossing=bunch_crossing)

def deep_chain_event(generations: int, *, collection: str = "EE", energy_GeV: float = 10.0) -> SubEvent:
    """
    One primary followed by `generations - 1` single-child decays; every
    track leaves one hit in its own cell. The primary's cumulative hit count
    is therefore `generations`.
    """
    vertices = [SimVertex(vertex_id=0, position=np.zeros(3), parent_track=-1)]
    tracks: List[SimTrack] = []
    hits: List[SimHit] = []
    for g in range(generations):
        tid = g + 1
        tracks.append(SimTrack(track_id=tid, vertex_index=len(vertices) - 1,
                               charge=1.0, px=energy_GeV, energy=energy_GeV))
        hits.append(SimHit(cell_id=g, energy=0.01, track_id=tid, collection=collection))
        if g < generations - 1:
            vertices.append(SimVertex(vertex_id=len(vertices),
                                      position=np.array([0.0, 0.0, float(g + 1)]),
                                      parent_track=tid))
    return SubEvent(tracks=tracks, vertices=vertices, hits={collection: hits})
