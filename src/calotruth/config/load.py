from __future__ import annotations
from .schemas import Config
from dataclasses import asdict, is_dataclass
from pathlib import Path
import json

try:
    import tomllib  # py311+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # py<=310

def parse_config(text: str) -> Config:
    """Validate TOML text; raises pydantic.ValidationError on bad values."""
    return Config(**tomllib.loads(text))

def load_config(path: str | Path) -> Config:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"config file not found: {p}")
    return parse_config(p.read_text())

def snapshot_config_toml(path: str | Path) -> str:
    """Return the raw TOML text for embedding in HDF5 metadata."""
    return Path(path).read_text()

def json_dumps(obj) -> str:
    """Compact, key-sorted JSON; dataclasses are expanded first."""
    if is_dataclass(obj) and not isinstance(obj, type):
        obj = asdict(obj)
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False, sort_keys=True)
