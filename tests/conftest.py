import numpy as np
import pytest

from calotruth.config.schemas import SelectionCfg
from calotruth.physics.hits import SimHit
from calotruth.physics.tracks import SimTrack, SimVertex, SubEvent


def scenario_sub_event(extra_hits=()):
    """
    Primary vertex 0; track A (id 1, 10 hits) decays at vertex 1 into
    B (id 2, 5 hits, stable) and C (id 3, no hits, stable).
    """
    vertices = [
        SimVertex(0, np.zeros(3), parent_track=-1),
        SimVertex(1, np.array([0.0, 0.0, 10.0]), parent_track=1),
    ]
    tracks = [
        SimTrack(1, vertex_index=0, charge=1.0, px=10.0, energy=10.0, pdg_id=211),
        SimTrack(2, vertex_index=1, charge=1.0, px=5.0, energy=5.0, pdg_id=211),
        SimTrack(3, vertex_index=1, charge=0.0, px=1.0, energy=1.0, pdg_id=22),
    ]
    hits = [SimHit(cell_id=100 + i % 3, energy=0.1, track_id=1, collection="EE") for i in range(10)]
    hits += [SimHit(cell_id=200 + i, energy=0.2, track_id=2, collection="EE") for i in range(5)]
    hits += list(extra_hits)
    return SubEvent(tracks=tracks, vertices=vertices, hits={"EE": hits})


@pytest.fixture
def scenario():
    return scenario_sub_event()


@pytest.fixture
def loose_selection():
    return SelectionCfg(min_energy=0.0, max_pseudorapidity=5.0)


@pytest.fixture
def make_scenario():
    return scenario_sub_event
