from __future__ import annotations
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, List, Any

class RunCfg(BaseModel):
    """
    Global run controls.
    """

    # Diagnostics
    diagnostics_level: int = 1  # 0=off, 1=minimal, 2=verbose

    # Progress bar over events
    progress: bool = False

    # Limits
    max_events: Optional[int] = None

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v

class IOCfg(BaseModel):
    """
    I/O paths.

    TOML:

    [io]
    input_path  = "..."
    output_path = "..."
    summary_csv = "..."       # optional calo-particle table
    """

    input_path: str
    output_path: str
    summary_csv: Optional[str] = None

    # Adapter-specific sub-config, e.g. [io.adapter]
    adapter: Dict[str, Any] = Field(default_factory=dict)

class HitsCfg(BaseModel):
    """
    Which hit collections feed the truth graph.

    TOML:

    [hits]
    collections = ["EE", "HEF", "HEB"]   # empty = every collection in the input
    """

    collections: List[str] = Field(default_factory=list)

    # Hits of a track are counted only when their process type matches the
    # track's first hit. A per-detector reference process type is reserved
    # for later and cannot be switched on yet.
    allow_different_process_type_for_different_detectors: bool = False

    @field_validator("allow_different_process_type_for_different_detectors")
    def _process_type_policy(cls, v: bool) -> bool:
        if v:
            raise ValueError(
                "allow_different_process_type_for_different_detectors is not supported; "
                "only matching-process-type counting is implemented"
            )
        return v

class SelectionCfg(BaseModel):
    """
    Promotion of primary particles to calo particles.
    """

    min_energy: float = Field(0.5, ge=0.0)  # GeV
    max_pseudorapidity: float = Field(5.0, ge=0.0)
    charged_only: bool = False
    signal_only: bool = True
    require_gen_particle: bool = True

class PileupCfg(BaseModel):
    """
    Bunch-crossing window for pileup sub-events, relative to the signal
    crossing. Use positive values; 0/0 keeps in-time pileup only.
    """

    maximum_previous_bunch_crossing: int = Field(0, ge=0)
    maximum_subsequent_bunch_crossing: int = Field(0, ge=0)

    def in_window(self, bunch_crossing: int) -> bool:
        return (-self.maximum_previous_bunch_crossing
                <= bunch_crossing
                <= self.maximum_subsequent_bunch_crossing)


class Config(BaseModel):
    """
    Top-level TOML configuration.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    io: IOCfg
    hits: HitsCfg = Field(default_factory=HitsCfg)
    selection: SelectionCfg = Field(default_factory=SelectionCfg)
    pileup: PileupCfg = Field(default_factory=PileupCfg)
