# src/calotruth/cli/smoke.py
'''
A small CLI that runs:
synthetic decay chains → HDF5 input → adapter → accumulator → HDF5 truth.
It does not need a config file; selection defaults come from SelectionCfg.
'''
from __future__ import annotations
import argparse
from pathlib import Path

import h5py
import numpy as np

from calotruth.config.schemas import SelectionCfg
from calotruth.io.adapters import HDF5Adapter
from calotruth.io.sim_store import write_sim_events
from calotruth.io.truth_store import write_init, write_truth
from calotruth.sim.synth import synth_decay_chain_event
from calotruth.truth.accumulator import CaloTruthAccumulator

def main(argv=None):
    ap = argparse.ArgumentParser(description="Synthetic calo-truth smoke pipeline")
    ap.add_argument("-o", "--out", type=Path, default=Path("calotruth_smoke.h5"), help="Output truth HDF5")
    ap.add_argument("--events", type=int, default=3)
    ap.add_argument("--primaries", type=int, default=4)
    ap.add_argument("--depth", type=int, default=3)
    ap.add_argument("--seed", type=int, default=1234)
    ap.add_argument("--min-energy", type=float, default=0.5)
    args = ap.parse_args(argv)

    rng = np.random.default_rng(args.seed)
    sim_path = args.out.with_name(args.out.stem + "_sim.h5")
    n = write_sim_events(
        str(sim_path),
        ((i, synth_decay_chain_event(args.primaries, args.depth, rng=rng), []) for i in range(args.events)),
    )
    print(f"[smoke] Wrote {n} synthetic events to {sim_path}")

    acc = CaloTruthAccumulator(selection=SelectionCfg(min_energy=args.min_energy))
    f = write_init(str(args.out))
    try:
        for ev in HDF5Adapter().iter_events(str(sim_path)):
            out, diag = acc.process_event(ev.signal, ev.pileup)
            write_truth(f, ev.event_id, out, diag)
            print(f"[smoke] event {ev.event_id}: tracks={diag.tracks} vertices={diag.vertices} "
                  f"ghosts={diag.ghost_vertices} clusters={diag.sim_clusters} "
                  f"calo_particles={diag.calo_particles} rejected={diag.reasons}")
    finally:
        f.close()

    with h5py.File(args.out, "r") as f:
        print(f"[smoke] {args.out} holds {len(f['truth'])} events")

if __name__ == "__main__":
    main()
