from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict

@dataclass
class TruthDiagnostics:
    """
    Per-event counters returned next to the output collections.

    warnings holds one message per warning kind; repeated occurrences of the
    same kind only bump the matching counter.
    """
    sub_events: int = 0
    skipped_sub_events: int = 0
    tracks: int = 0
    vertices: int = 0
    hits: int = 0
    orphan_hits: int = 0
    unmatched_process_hits: int = 0
    malformed_references: int = 0
    collapsed_vertices: int = 0
    ghost_vertices: int = 0
    unreachable_vertices: int = 0
    candidates: int = 0
    sim_clusters: int = 0
    calo_particles: int = 0
    zero_energy_cells: int = 0
    reasons: Dict[str, int] = field(default_factory=dict)
    warnings: Dict[str, str] = field(default_factory=dict)

    def inc(self, reason: str) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + 1

    def warn(self, kind: str, message: str, *, verbose: bool = True) -> bool:
        """
        Record a warning of the given kind. Returns True (and prints, when
        verbose) only for the first occurrence in this event.
        """
        if kind in self.warnings:
            return False
        self.warnings[kind] = message
        if verbose:
            print(f"[warning] {kind}: {message}")
        return True

    def merge(self, other: "TruthDiagnostics") -> None:
        """Fold the counters of a sub-event into this event-level record."""
        for name in (
            "sub_events", "skipped_sub_events", "tracks", "vertices", "hits",
            "orphan_hits", "unmatched_process_hits", "malformed_references",
            "collapsed_vertices", "ghost_vertices", "unreachable_vertices",
            "candidates", "sim_clusters", "calo_particles", "zero_energy_cells",
        ):
            setattr(self, name, getattr(self, name) + getattr(other, name))
        for k, v in other.reasons.items():
            self.reasons[k] = self.reasons.get(k, 0) + v
        for k, msg in other.warnings.items():
            self.warnings.setdefault(k, msg)
