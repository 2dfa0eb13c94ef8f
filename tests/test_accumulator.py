import pytest

from calotruth.config.load import parse_config
from calotruth.config.schemas import HitsCfg, PileupCfg, SelectionCfg
from calotruth.physics.hits import SimHit
from calotruth.physics.tracks import SubEvent
from calotruth.truth.accumulator import CaloTruthAccumulator
from calotruth.truth.hit_index import MissingInputError


def _summary(out):
    return (
        [(sc.track_id, sc.hit_indices, sc.fractions) for sc in out.sim_clusters],
        [(cp.track_id, cp.sc_start, cp.sc_stop) for cp in out.calo_particles],
    )


def test_scenario_event(scenario, loose_selection):
    acc = CaloTruthAccumulator(selection=loose_selection)
    out, diag = acc.process_event(scenario)

    assert [sc.track_id for sc in out.sim_clusters] == [1, 2]
    assert [(cp.track_id, cp.sc_start, cp.sc_stop) for cp in out.calo_particles] == [(1, 0, 2)]
    assert out.clusters_of(out.calo_particles[0]) == out.sim_clusters
    for sc in out.sim_clusters:
        assert all(f == pytest.approx(1.0) for f in sc.fractions.values())
    assert len(out.hits) == 15
    assert out.cell_energy[100] == pytest.approx(0.4)

    assert diag.sub_events == 1
    assert diag.tracks == 3 and diag.vertices == 2 and diag.hits == 15
    assert diag.ghost_vertices == 2
    assert diag.malformed_references == 0
    assert diag.unreachable_vertices == 0
    assert acc.graphs[0].vertices[0].cumulative_hits == 15


def test_lifecycle_requires_initialize(scenario):
    acc = CaloTruthAccumulator()
    with pytest.raises(RuntimeError):
        acc.accumulate(scenario)
    with pytest.raises(RuntimeError):
        acc.finalize_event()

    acc.initialize_event()
    acc.accumulate(scenario)
    acc.finalize_event()
    # finalize closes the event
    with pytest.raises(RuntimeError):
        acc.accumulate_pileup(scenario)


def test_missing_input_keeps_earlier_state(scenario, loose_selection):
    acc = CaloTruthAccumulator(selection=loose_selection)
    acc.initialize_event()
    acc.accumulate(scenario)
    with pytest.raises(MissingInputError):
        acc.accumulate_pileup(SubEvent(tracks=scenario.tracks, vertices=None, hits=scenario.hits))
    with pytest.raises(MissingInputError):
        acc.accumulate_pileup(SubEvent(tracks=None, vertices=scenario.vertices, hits=scenario.hits))
    with pytest.raises(MissingInputError):
        acc.accumulate_pileup(SubEvent(tracks=scenario.tracks, vertices=scenario.vertices, hits=None))
    out, diag = acc.finalize_event()
    assert [(cp.track_id, cp.sc_start, cp.sc_stop) for cp in out.calo_particles] == [(1, 0, 2)]
    assert len(out.hits) == 15
    assert diag.sub_events == 1


def test_missing_configured_collection(scenario):
    acc = CaloTruthAccumulator(hits=HitsCfg(collections=["EE", "HEB"]))
    with pytest.raises(MissingInputError):
        acc.process_event(scenario)


def test_flat_hits_are_filtered_by_collection(make_scenario, loose_selection):
    sub = make_scenario(extra_hits=[SimHit(cell_id=900, energy=5.0, track_id=2, collection="HEF")])
    flat = SubEvent(tracks=sub.tracks, vertices=sub.vertices, hits=sub.hits["EE"])

    acc = CaloTruthAccumulator(hits=HitsCfg(collections=["EE"]), selection=loose_selection)
    out, _ = acc.process_event(flat)
    assert 900 not in out.cell_energy
    assert len(out.hits) == 15

    # an absent collection in a flat list simply contributes nothing
    acc = CaloTruthAccumulator(hits=HitsCfg(collections=["EE", "HEB"]), selection=loose_selection)
    out, _ = acc.process_event(flat)
    assert 900 not in out.cell_energy

    acc = CaloTruthAccumulator(selection=loose_selection)
    out, _ = acc.process_event(flat)
    assert out.cell_energy[900] == pytest.approx(5.0)


def test_orphan_hit_dilutes_fraction(make_scenario, loose_selection):
    sub = make_scenario(extra_hits=[SimHit(cell_id=100, energy=0.4, track_id=99, collection="EE")])
    out, diag = CaloTruthAccumulator(selection=loose_selection).process_event(sub)
    assert out.sim_clusters[0].fractions[100] == pytest.approx(0.5)
    assert out.sim_clusters[0].fractions[101] == pytest.approx(1.0)
    assert diag.orphan_hits == 1
    assert "orphan_hits" in diag.warnings


def test_orphan_warning_printed_once_per_event(make_scenario, loose_selection, capsys):
    sub = make_scenario(extra_hits=[SimHit(cell_id=100, energy=0.4, track_id=99, collection="EE")])
    acc = CaloTruthAccumulator(selection=loose_selection, diagnostics_level=1)
    _, diag = acc.process_event(sub, [make_scenario(extra_hits=list(sub.hits["EE"][-1:]))])
    assert diag.orphan_hits == 2
    assert capsys.readouterr().out.count("[warning] orphan_hits") == 1

    # a new event warns again
    acc.process_event(sub)
    assert capsys.readouterr().out.count("[warning] orphan_hits") == 1


def test_zero_energy_cell(make_scenario, loose_selection):
    sub = make_scenario(extra_hits=[SimHit(cell_id=300, energy=0.0, track_id=1, collection="EE")])
    out, diag = CaloTruthAccumulator(selection=loose_selection).process_event(sub)
    assert out.sim_clusters[0].fractions[300] == 0.0
    assert diag.zero_energy_cells == 1
    assert "zero_energy_cell" in diag.warnings


def test_pileup_rejected_when_signal_only(make_scenario):
    pu = make_scenario()
    pu.bunch_crossing = 0
    acc = CaloTruthAccumulator(selection=SelectionCfg(min_energy=0.0, signal_only=True))
    out, diag = acc.process_event(make_scenario(), [pu])

    assert [(cp.track_id, cp.sc_start, cp.sc_stop) for cp in out.calo_particles] == [(1, 0, 2)]
    assert diag.reasons == {"pileup": 1}
    # pileup energy still counts toward cell totals
    assert len(out.hits) == 30
    for sc in out.sim_clusters:
        assert all(f == pytest.approx(0.5) for f in sc.fractions.values())


def test_pileup_kept_without_signal_only(make_scenario):
    acc = CaloTruthAccumulator(selection=SelectionCfg(min_energy=0.0, signal_only=False))
    out, diag = acc.process_event(make_scenario(), [make_scenario()])

    assert [(cp.track_id, cp.sc_start, cp.sc_stop) for cp in out.calo_particles] == [
        (1, 0, 2),
        (1, 2, 4),
    ]
    # hit indices are event-wide
    assert out.sim_clusters[2].hit_indices == list(range(15, 25))
    assert diag.sub_events == 2
    assert len(acc.graphs) == 2


def test_pileup_window_and_order(make_scenario, loose_selection):
    acc = CaloTruthAccumulator(
        selection=loose_selection,
        pileup=PileupCfg(maximum_previous_bunch_crossing=1, maximum_subsequent_bunch_crossing=1),
    )
    early, inside, late = make_scenario(), make_scenario(), make_scenario()
    early.bunch_crossing, inside.bunch_crossing, late.bunch_crossing = -3, -1, 2

    acc.initialize_event()
    acc.accumulate(make_scenario())
    assert acc.accumulate_pileup(early) is False
    assert acc.accumulate_pileup(inside) is True
    assert acc.accumulate_pileup(late) is False
    with pytest.raises(ValueError):
        acc.accumulate_pileup(inside)
    _, diag = acc.finalize_event()
    assert diag.sub_events == 2
    assert diag.skipped_sub_events == 2
    assert diag.reasons["bx_outside_window"] == 2


def test_process_event_sorts_pileup(make_scenario, loose_selection):
    a, b = make_scenario(), make_scenario()
    a.bunch_crossing, b.bunch_crossing = 1, -1
    acc = CaloTruthAccumulator(
        selection=loose_selection,
        pileup=PileupCfg(maximum_previous_bunch_crossing=2, maximum_subsequent_bunch_crossing=2),
    )
    _, diag = acc.process_event(make_scenario(), [a, b])
    assert diag.sub_events == 3


def test_empty_event():
    out, diag = CaloTruthAccumulator().process_event(SubEvent(tracks=[], vertices=[], hits={}))
    assert out.sim_clusters == [] and out.calo_particles == [] and out.hits == []
    assert diag.sub_events == 1


def test_repeated_events_are_identical_and_reset(scenario, loose_selection):
    acc = CaloTruthAccumulator(selection=loose_selection)
    first, _ = acc.process_event(scenario)
    snapshot = _summary(first)
    second, diag = acc.process_event(scenario)
    assert _summary(second) == snapshot
    assert diag.sub_events == 1
    assert len(acc.graphs) == 1


def test_from_config():
    cfg = parse_config(
        """
        [run]
        diagnostics_level = 2

        [io]
        input_path = "in.h5"
        output_path = "out.h5"

        [hits]
        collections = ["EE"]

        [selection]
        min_energy = 1.5
        """
    )
    acc = CaloTruthAccumulator.from_config(cfg)
    assert acc.diagnostics_level == 2
    assert acc.hits_cfg.collections == ["EE"]
    assert acc.selection.min_energy == 1.5


def test_signal_accumulated_once(scenario):
    acc = CaloTruthAccumulator()
    acc.initialize_event()
    acc.accumulate(scenario)
    with pytest.raises(RuntimeError):
        acc.accumulate(scenario)
    _, diag = acc.finalize_event()
    assert diag.sub_events == 1


def test_pileup_requires_signal_first(make_scenario):
    acc = CaloTruthAccumulator()
    acc.initialize_event()
    with pytest.raises(RuntimeError):
        acc.accumulate_pileup(make_scenario())
    acc.accumulate(make_scenario())
    acc.accumulate_pileup(make_scenario())
    # no signal after pileup either
    with pytest.raises(RuntimeError):
        acc.accumulate(make_scenario())
    _, diag = acc.finalize_event()
    assert diag.sub_events == 2


def test_orphan_hit_left_out_of_cumulative_counts(make_scenario, loose_selection):
    sub = make_scenario(extra_hits=[SimHit(cell_id=100, energy=0.4, track_id=99, collection="EE")])
    acc = CaloTruthAccumulator(selection=loose_selection)
    out, diag = acc.process_event(sub)

    graph = acc.graphs[0]
    assert graph.vertices[0].cumulative_hits == 15
    edge_a = graph.edges[graph.out_edges[0][0]]
    assert edge_a.track.track_id == 1
    assert (edge_a.hits, edge_a.cumulative_hits) == (10, 15)
    assert out.calo_particles[0].cumulative_hits == 15
    assert sum(sc.n_hits for sc in out.sim_clusters) == 15
    assert len(out.hits) == 16
    assert diag.orphan_hits == 1 and len(diag.warnings) == 1
