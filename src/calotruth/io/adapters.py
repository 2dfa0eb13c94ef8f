"""
calotruth.io.adapters

Readers that turn stored simulation records into physics-layer sub-events
(calotruth.physics.tracks.SubEvent) for the truth accumulator.

Design goals
------------
- Keep I/O concerns isolated from the graph code.
- Stream events one at a time; each event is materialized only while it
  is being accumulated.
- Report absent collections as None instead of guessing; the accumulator
  decides that a missing collection is fatal for the event.

Entry points
------------
- class HDF5Adapter: reads files written by calotruth.io.sim_store.
- function make_adapter(cfg): factory from the [io.adapter] TOML section.

Config (example)
----------------
[io.adapter]
type = "hdf5"
events_group = "/events"
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterator, List

import h5py

from calotruth.physics.tracks import SubEvent
from calotruth.io.sim_store import read_sub_event


@dataclass
class EventInput:
    """One event: the signal sub-event plus pileup in stored order."""
    event_id: int
    signal: SubEvent
    pileup: List[SubEvent] = field(default_factory=list)


class BaseAdapter:
    """
    Abstract adapter interface.
    """

    def iter_events(self, path: str) -> Iterator[EventInput]:
        raise NotImplementedError


class HDF5Adapter(BaseAdapter):
    """
    Read events from the layout written by sim_store.write_sim_events:

    <events_group>/<event>/signal
    <events_group>/<event>/pileup/<k>
    """

    def __init__(self, events_group: str = "/events") -> None:
        self.events_group = events_group

    def iter_events(self, path: str) -> Iterator[EventInput]:
        with h5py.File(path, "r") as f:
            if self.events_group not in f:
                raise KeyError(f"{self.events_group} not found in {path}")
            root = f[self.events_group]
            for name in sorted(root.keys()):
                g_ev = root[name]
                event_id = int(g_ev.attrs["event"]) if "event" in g_ev.attrs else int(name)
                if "signal" in g_ev:
                    signal = read_sub_event(g_ev["signal"])
                else:
                    # nothing stored: every collection reads as absent
                    signal = SubEvent(tracks=None, vertices=None, hits=None,
                                      meta={"group": g_ev.name})
                pileup = []
                if "pileup" in g_ev:
                    g_pu = g_ev["pileup"]
                    pileup = [read_sub_event(g_pu[k]) for k in sorted(g_pu.keys())]
                yield EventInput(event_id=event_id, signal=signal, pileup=pileup)


def make_adapter(cfg: Dict) -> BaseAdapter:
    """
    Create an adapter from a config dict (from TOML/CLI).

    Expected keys under [io.adapter]:
      type: "hdf5"
      events_group: str
    """
    typ = (cfg.get("type") or "hdf5").lower()

    if typ in ("hdf5", "h5"):
        return HDF5Adapter(events_group=cfg.get("events_group", "/events"))

    raise ValueError(f"Unknown adapter type: {typ}")
