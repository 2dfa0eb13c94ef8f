from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional
import typer
from tqdm import tqdm

from calotruth.config.load import load_config, snapshot_config_toml
from calotruth.io.adapters import make_adapter
from calotruth.io.truth_store import calo_particle_rows, write_init, write_summary_csv, write_truth
from calotruth.truth.accumulator import CaloTruthAccumulator
from calotruth.truth.diagnostics import TruthDiagnostics
from calotruth.truth.hit_index import MissingInputError


def run_pipeline(
    cfg_path: str,
    *,
    signal_only: Optional[bool] = None,
    diagnostics_level: Optional[int] = None,
) -> Path:
    """
    Orchestrate the full truth pipeline from a TOML config file.

    CLI flags (--signal-only/--no-signal-only, --diagnostics-level) override
    the corresponding config fields when not None.

    Events whose input is missing a collection are skipped (reported at
    diagnostics level >= 1); every other event gets a /truth/<event> group.

    Returns
    -------
    Path to written HDF5 file.
    """
    cfg = load_config(cfg_path)

    # ---- apply CLI overrides on top of TOML ----
    if signal_only is not None:
        cfg.selection.signal_only = signal_only
    if diagnostics_level is not None:
        cfg.run.diagnostics_level = diagnostics_level

    diag_level = cfg.run.diagnostics_level
    if diag_level >= 1:
        print(f"[run] config = {cfg_path}")
        print(f"[run] input={cfg.io.input_path} -> output={cfg.io.output_path}")
        print(f"[run] selection: min_energy={cfg.selection.min_energy} "
              f"max_eta={cfg.selection.max_pseudorapidity} "
              f"charged_only={cfg.selection.charged_only} signal_only={cfg.selection.signal_only}")

    out_path = Path(cfg.io.output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    adapter = make_adapter(cfg.io.adapter)
    acc = CaloTruthAccumulator.from_config(cfg)
    totals = TruthDiagnostics()
    rows: List[Dict[str, Any]] = []
    n_done = n_failed = 0

    f = write_init(str(out_path), snapshot_config_toml(cfg_path))
    try:
        events = adapter.iter_events(str(cfg.io.input_path))
        for ev in tqdm(events, desc="events", unit="event", disable=not cfg.run.progress):
            if cfg.run.max_events is not None and n_done + n_failed >= cfg.run.max_events:
                if diag_level >= 1:
                    print(f"[pipeline] Reached max_events={cfg.run.max_events}, stopping.")
                break
            try:
                out, diag = acc.process_event(ev.signal, ev.pileup)
            except MissingInputError as exc:
                n_failed += 1
                if diag_level >= 1:
                    print(f"[pipeline] Skipping event {ev.event_id}: {exc}")
                continue
            write_truth(f, ev.event_id, out, diag)
            rows.extend(calo_particle_rows(ev.event_id, out))
            totals.merge(diag)
            n_done += 1
    finally:
        f.close()

    if diag_level >= 1:
        print(f"[pipeline] {n_done} events written, {n_failed} skipped")
        print(f"[pipeline] {totals.calo_particles} calo particles, {totals.sim_clusters} sim clusters, "
              f"{totals.ghost_vertices} ghost vertices, {totals.orphan_hits} orphan hits, "
              f"{totals.malformed_references} malformed references")
        if diag_level >= 2 and totals.reasons:
            print(f"[pipeline] Rejections: {totals.reasons}")

    if cfg.io.summary_csv:
        csv_path = write_summary_csv(rows, cfg.io.summary_csv)
        if diag_level >= 1:
            print(f"[pipeline] Wrote summary {csv_path}")

    return out_path


# ---------------------------------------------------------------------------
# Unified CLI entry point
# ---------------------------------------------------------------------------

app = typer.Typer(help="Calorimeter truth accumulator (calotruth.pipelines.core)")


@app.command()
def main(
    cfg_path: str = typer.Argument(
        ...,
        help="Path to TOML config file",
    ),
    signal_only: Optional[bool] = typer.Option(
        None,
        "--signal-only / --no-signal-only",
        help="Promote only signal particles to calo particles; overrides [selection].signal_only when set",
    ),
    diagnostics_level: Optional[int] = typer.Option(
        None,
        "--diagnostics-level",
        "-d",
        help="Override [run].diagnostics_level (0, 1 or 2)",
    ),
):
    """
    Run the truth pipeline for a single config.
    """
    out_path = run_pipeline(
        cfg_path,
        signal_only=signal_only,
        diagnostics_level=diagnostics_level,
    )
    typer.echo(str(out_path))


if __name__ == "__main__":
    app()
