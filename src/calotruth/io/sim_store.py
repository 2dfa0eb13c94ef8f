from __future__ import annotations
from typing import Dict, Iterable, List, Sequence, Tuple
import h5py
import numpy as np
from datetime import datetime, timezone

from calotruth.physics.hits import SimHit
from calotruth.physics.tracks import SimTrack, SimVertex, SubEvent

FORMAT_VERSION = "1.0"

TRACK_COLUMNS = ("track_id", "vertex_index", "charge", "process_type",
                 "px", "py", "pz", "energy", "pdg_id", "gen_particle")
HIT_COLUMNS = ("cell_id", "energy", "track_id", "process_type")


def _replace_or_create(grp: h5py.Group, name: str, data: np.ndarray) -> None:
    if name in grp:
        del grp[name]
    if data.size == 0:
        grp.create_dataset(name, data=data)
    else:
        grp.create_dataset(name, data=data, compression="gzip")


def _track_columns(tracks: Sequence[SimTrack]) -> Dict[str, np.ndarray]:
    return {
        "track_id": np.array([t.track_id for t in tracks], dtype=np.int64),
        "vertex_index": np.array([t.vertex_index for t in tracks], dtype=np.int64),
        "charge": np.array([t.charge for t in tracks], dtype=np.float32),
        "process_type": np.array([t.process_type for t in tracks], dtype=np.int32),
        "px": np.array([t.px for t in tracks], dtype=np.float64),
        "py": np.array([t.py for t in tracks], dtype=np.float64),
        "pz": np.array([t.pz for t in tracks], dtype=np.float64),
        "energy": np.array([t.energy for t in tracks], dtype=np.float64),
        "pdg_id": np.array([t.pdg_id for t in tracks], dtype=np.int32),
        "gen_particle": np.array([t.gen_particle for t in tracks], dtype=np.bool_),
    }


def _hit_columns(hits: Sequence[SimHit]) -> Dict[str, np.ndarray]:
    return {
        "cell_id": np.array([h.cell_id for h in hits], dtype=np.int64),
        "energy": np.array([h.energy for h in hits], dtype=np.float64),
        "track_id": np.array([h.track_id for h in hits], dtype=np.int64),
        "process_type": np.array([h.process_type for h in hits], dtype=np.int32),
    }


def write_sub_event(grp: h5py.Group, sub: SubEvent) -> None:
    """
    Store one sub-event as column datasets:

    <grp>/tracks/{track_id,vertex_index,charge,...}   (N_tracks,)
    <grp>/vertices/position                           (N_vertices, 3) float64
    <grp>/vertices/parent_track                       (N_vertices,)   int64
    <grp>/hits/<collection>/{cell_id,energy,track_id,process_type}

    A collection that is None on the sub-event is not written, so readers
    see it as absent.
    """
    grp.attrs["bunch_crossing"] = int(sub.bunch_crossing)

    if sub.tracks is not None:
        g = grp.require_group("tracks")
        for name, arr in _track_columns(sub.tracks).items():
            _replace_or_create(g, name, arr)

    if sub.vertices is not None:
        g = grp.require_group("vertices")
        pos = np.zeros((len(sub.vertices), 3), dtype=np.float64)
        for i, v in enumerate(sub.vertices):
            pos[i, :] = np.asarray(v.position, dtype=float).reshape(3)
        _replace_or_create(g, "position", pos)
        _replace_or_create(g, "parent_track",
                           np.array([v.parent_track for v in sub.vertices], dtype=np.int64))

    collections = sub.hit_collections()
    if collections is not None:
        g_hits = grp.require_group("hits")
        for cname, hits in collections.items():
            g = g_hits.require_group(cname)
            for name, arr in _hit_columns(hits).items():
                _replace_or_create(g, name, arr)


def write_sim_events(
    path: str,
    events: Iterable[Tuple[int, SubEvent, Sequence[SubEvent]]],
    *,
    group: str = "/events",
) -> int:
    """
    Write (event_id, signal, pileup) triples to an HDF5 input file:

    /events/<event_id>/signal
    /events/<event_id>/pileup/<k>      k = 0.. in the given order

    Returns the number of events written.
    """
    n = 0
    with h5py.File(path, "w") as f:
        f.attrs["format_version"] = FORMAT_VERSION
        f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
        root = f.require_group(group)
        for event_id, signal, pileup in events:
            g_ev = root.require_group(f"{int(event_id):08d}")
            g_ev.attrs["event"] = int(event_id)
            write_sub_event(g_ev.require_group("signal"), signal)
            g_pu = g_ev.require_group("pileup")
            for k, sub in enumerate(pileup):
                write_sub_event(g_pu.require_group(f"{k:04d}"), sub)
            n += 1
    return n


def read_sub_event(grp: h5py.Group) -> SubEvent:
    bx = int(grp.attrs.get("bunch_crossing", 0))

    tracks: List[SimTrack] | None = None
    if "tracks" in grp:
        g = grp["tracks"]
        cols = {k: g[k][...] for k in TRACK_COLUMNS if k in g}
        n = len(cols["track_id"])
        tracks = [
            SimTrack(
                track_id=int(cols["track_id"][i]),
                vertex_index=int(cols["vertex_index"][i]),
                charge=float(cols["charge"][i]) if "charge" in cols else 0.0,
                process_type=int(cols["process_type"][i]) if "process_type" in cols else 0,
                px=float(cols["px"][i]) if "px" in cols else 0.0,
                py=float(cols["py"][i]) if "py" in cols else 0.0,
                pz=float(cols["pz"][i]) if "pz" in cols else 0.0,
                energy=float(cols["energy"][i]) if "energy" in cols else 0.0,
                pdg_id=int(cols["pdg_id"][i]) if "pdg_id" in cols else 0,
                gen_particle=bool(cols["gen_particle"][i]) if "gen_particle" in cols else True,
            )
            for i in range(n)
        ]

    vertices: List[SimVertex] | None = None
    if "vertices" in grp:
        g = grp["vertices"]
        parent = g["parent_track"][...]
        pos = g["position"][...] if "position" in g else np.zeros((len(parent), 3))
        vertices = [
            SimVertex(vertex_id=i, position=np.asarray(pos[i], dtype=float), parent_track=int(parent[i]))
            for i in range(len(parent))
        ]

    hits: Dict[str, List[SimHit]] | List[SimHit] | None = None
    if "hits" in grp and len(grp["hits"]) == 0:
        # hits were stored but no collection: an empty flat list
        hits = []
    elif "hits" in grp:
        hits = {}
        for cname, g in grp["hits"].items():
            cell = g["cell_id"][...]
            energy = g["energy"][...]
            tid = g["track_id"][...]
            ptype = g["process_type"][...] if "process_type" in g else np.zeros(len(cell), dtype=np.int32)
            hits[cname] = [
                SimHit(cell_id=int(cell[i]), energy=float(energy[i]), track_id=int(tid[i]),
                       process_type=int(ptype[i]), collection=cname)
                for i in range(len(cell))
            ]

    return SubEvent(tracks=tracks, vertices=vertices, hits=hits, bunch_crossing=bx,
                    meta={"group": grp.name})
