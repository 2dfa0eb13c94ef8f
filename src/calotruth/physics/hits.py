from __future__ import annotations
from dataclasses import dataclass

@dataclass(slots=True)
class SimHit:
    """
    Simulated calorimeter hit (physics layer).

    cell_id: opaque readout-cell key (only used as a mapping key)
    energy: deposited energy [GeV], non-negative
    track_id: id of the simulated track that produced the hit
    process_type: simulation process code of the step that produced the hit
    collection: name of the detector collection the hit was read from
    """
    cell_id: int
    energy: float
    track_id: int
    process_type: int = 0
    collection: str = "default"

    def __post_init__(self) -> None:
        if self.energy < 0:
            raise ValueError(f"SimHit energy must be non-negative, got {self.energy}")
