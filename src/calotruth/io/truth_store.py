from __future__ import annotations
from typing import Any, Dict, List, Sequence
import h5py
import numpy as np
import pandas as pd
from datetime import datetime, timezone
from pathlib import Path

from calotruth.config.load import json_dumps
from calotruth.truth.accumulator import TruthCollections
from calotruth.truth.assemble import SimCluster
from calotruth.truth.diagnostics import TruthDiagnostics

FORMAT_VERSION = "1.0"


def write_init(path: str, config_text: str = "") -> h5py.File:
    f = h5py.File(path, "w")
    # Root attrs
    f.attrs["format_version"] = FORMAT_VERSION
    f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
    f.attrs["software"] = "calotruth 0.1.0"
    f.attrs["config_text"] = config_text
    f.require_group("truth")
    return f


def _create(grp: h5py.Group, name: str, data: np.ndarray) -> None:
    if name in grp:
        del grp[name]
    if data.size == 0:
        grp.create_dataset(name, data=data)
    else:
        grp.create_dataset(name, data=data, compression="gzip")


def _flatten_clusters(clusters: Sequence[SimCluster]) -> Dict[str, np.ndarray]:
    """
    CSR layout for the ragged per-cluster lists:

      hit_ptr  (N+1,) int64 -> hit_index
      cell_ptr (N+1,) int64 -> cell_id, fraction, cell_energy
    """
    n = len(clusters)
    hit_ptr = np.zeros(n + 1, dtype=np.int64)
    cell_ptr = np.zeros(n + 1, dtype=np.int64)
    for i, sc in enumerate(clusters):
        hit_ptr[i + 1] = hit_ptr[i] + len(sc.hit_indices)
        cell_ptr[i + 1] = cell_ptr[i] + len(sc.cell_energy)

    hit_index = np.empty(int(hit_ptr[-1]), dtype=np.int64)
    cell_id = np.empty(int(cell_ptr[-1]), dtype=np.int64)
    fraction = np.empty(int(cell_ptr[-1]), dtype=np.float32)
    cell_energy = np.empty(int(cell_ptr[-1]), dtype=np.float32)
    for i, sc in enumerate(clusters):
        hit_index[hit_ptr[i]:hit_ptr[i + 1]] = sc.hit_indices
        w = int(cell_ptr[i])
        for cell in sorted(sc.cell_energy):
            cell_id[w] = cell
            cell_energy[w] = sc.cell_energy[cell]
            fraction[w] = sc.fractions.get(cell, 0.0)
            w += 1

    return {
        "track_id": np.array([sc.track_id for sc in clusters], dtype=np.int64),
        "energy": np.array([sc.energy for sc in clusters], dtype=np.float32),
        "hit_ptr": hit_ptr,
        "hit_index": hit_index,
        "cell_ptr": cell_ptr,
        "cell_id": cell_id,
        "cell_energy": cell_energy,
        "fraction": fraction,
    }


def write_truth(
    f: h5py.File,
    event_id: int,
    out: TruthCollections,
    diag: TruthDiagnostics | None = None,
) -> None:
    """
    Store one event's output collections.

    Layout:

    /truth/<event>/sim_clusters/track_id      (N,)   int64
    /truth/<event>/sim_clusters/energy        (N,)   float32
    /truth/<event>/sim_clusters/hit_ptr       (N+1,) int64   CSR into hit_index
    /truth/<event>/sim_clusters/hit_index     (M,)   int64   rows of the event hit array
    /truth/<event>/sim_clusters/cell_ptr      (N+1,) int64   CSR into cell_*
    /truth/<event>/sim_clusters/cell_id       (K,)   int64
    /truth/<event>/sim_clusters/cell_energy   (K,)   float32
    /truth/<event>/sim_clusters/fraction      (K,)   float32
    /truth/<event>/calo_particles/track_id    (P,)   int64
    /truth/<event>/calo_particles/sc_start    (P,)   uint32
    /truth/<event>/calo_particles/sc_stop     (P,)   uint32
    /truth/<event>/calo_particles/energy|eta|pdg_id|cumulative_hits

    The diagnostics are kept as JSON in the event group's attrs.
    """
    g_ev = f.require_group("truth").require_group(f"{int(event_id):08d}")
    g_ev.attrs["event"] = int(event_id)
    g_ev.attrs["n_hits"] = len(out.hits)
    if diag is not None:
        g_ev.attrs["diagnostics"] = json_dumps(diag)

    g_sc = g_ev.require_group("sim_clusters")
    for name, arr in _flatten_clusters(out.sim_clusters).items():
        _create(g_sc, name, arr)

    cps = out.calo_particles
    g_cp = g_ev.require_group("calo_particles")
    _create(g_cp, "track_id", np.array([cp.track_id for cp in cps], dtype=np.int64))
    _create(g_cp, "sc_start", np.array([cp.sc_start for cp in cps], dtype=np.uint32))
    _create(g_cp, "sc_stop", np.array([cp.sc_stop for cp in cps], dtype=np.uint32))
    _create(g_cp, "energy", np.array([cp.track.energy for cp in cps], dtype=np.float32))
    _create(g_cp, "eta", np.array([cp.track.eta for cp in cps], dtype=np.float32))
    _create(g_cp, "pdg_id", np.array([cp.track.pdg_id for cp in cps], dtype=np.int32))
    _create(g_cp, "cumulative_hits", np.array([cp.cumulative_hits for cp in cps], dtype=np.int64))


def read_truth(path: str, event_id: int) -> Dict[str, Any]:
    """
    Load one event back as plain arrays:
      {"sim_clusters": {...}, "calo_particles": {...}, "attrs": {...}}
    """
    path = str(path)
    key = f"/truth/{int(event_id):08d}"
    with h5py.File(path, "r") as f:
        if key not in f:
            raise KeyError(f"{key} not found in {path}")
        g_ev = f[key]
        return {
            "sim_clusters": {k: g_ev["sim_clusters"][k][...] for k in g_ev["sim_clusters"]},
            "calo_particles": {k: g_ev["calo_particles"][k][...] for k in g_ev["calo_particles"]},
            "attrs": dict(g_ev.attrs),
        }


def calo_particle_rows(event_id: int, out: TruthCollections) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for i, cp in enumerate(out.calo_particles):
        clusters = out.clusters_of(cp)
        rows.append({
            "event": int(event_id),
            "calo_particle": i,
            "track_id": cp.track_id,
            "pdg_id": cp.track.pdg_id,
            "energy": cp.track.energy,
            "eta": cp.track.eta,
            "charge": cp.track.charge,
            "sc_start": cp.sc_start,
            "sc_stop": cp.sc_stop,
            "cumulative_hits": cp.cumulative_hits,
            "deposited_energy": float(sum(sc.energy for sc in clusters)),
        })
    return rows


def write_summary_csv(rows: List[Dict[str, Any]], path: str | Path) -> Path:
    """One row per calo particle over all events."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    columns = ["event", "calo_particle", "track_id", "pdg_id", "energy", "eta", "charge",
               "sc_start", "sc_stop", "cumulative_hits", "deposited_energy"]
    pd.DataFrame(rows, columns=columns).to_csv(p, index=False)
    return p
