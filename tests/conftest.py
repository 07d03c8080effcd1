"""
Shared fixtures: synthetic reservoir tables.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


def make_reservoir_frame(n_rows: int, seed: int = 42) -> pd.DataFrame:
    """Reservoir table with strictly positive, in-range parameters."""
    rng = np.random.default_rng(seed)
    porosity = rng.uniform(0.10, 0.35, n_rows)
    perm = rng.uniform(10, 1000, n_rows)
    return pd.DataFrame({
        'FIELD': [f'F{i:03d}' for i in range(n_rows)],
        'THK': rng.uniform(10, 100, n_rows),
        'POROSITY': porosity,
        'SW': rng.uniform(0.10, 0.60, n_rows),
        'PERMEABILITY': perm,
        'PI': rng.uniform(1000, 8000, n_rows),
        'API': rng.uniform(20, 45, n_rows),
        'GOR': rng.uniform(0.5, 5, n_rows),
        'ORF': 0.1 + porosity + perm / 5000 + rng.normal(0, 0.02, n_rows),
    })


@pytest.fixture
def reservoir_factory():
    return make_reservoir_frame


@pytest.fixture
def scenario_data():
    """
    20 rows: rows 0-4 have API <= 5, rows 5-7 have GOR >= 10, 12 remain valid.
    """
    df = make_reservoir_frame(20, seed=7)
    df.loc[0:4, 'API'] = [1.0, 2.5, 3.0, 4.9, 5.0]
    df.loc[5:7, 'GOR'] = [10.0, 12.5, 30.0]
    return df


@pytest.fixture
def modeling_data():
    """60 filtered rows, enough for every model's training protocol."""
    return make_reservoir_frame(60, seed=3).drop(columns=['FIELD'])
