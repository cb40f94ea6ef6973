# This file is meant to hold fixtures that can be used for testing
# These fixtures set up data that can be used as inputs for the tests, so that no code is repeated
from datetime import datetime, timedelta

import numpy as np
import pandas as pd
import pytest
import pytz


@pytest.fixture
def polygon():
    # Narrabeen-Collaroy, Sydney
    return [[[151.301454, -33.700754],
             [151.311453, -33.702075],
             [151.307237, -33.739761],
             [151.294220, -33.736329],
             [151.301454, -33.700754]]]


@pytest.fixture
def output_dict():
    dates = [datetime(2019, 1, 1, 23, 50, tzinfo=pytz.utc),
             datetime(2019, 2, 2, 23, 50, tzinfo=pytz.utc),
             datetime(2019, 3, 6, 23, 50, tzinfo=pytz.utc)]
    x = np.arange(-100, 101, 1.0)
    shorelines = [np.column_stack([x, 50*np.ones(len(x))]),
                  np.column_stack([x, 80*np.ones(len(x))]),
                  np.zeros((0, 2))]
    return {'dates': dates,
            'shorelines': shorelines,
            'filename': ['im1', 'im2', 'im3'],
            'cloud_cover': [0.0, 0.1, 0.2],
            'geoaccuracy': [12, 'PASSED', 'FAILED'],
            'idx': [0, 1, 2],
            'MNDWI_threshold': [-0.1, 0.0, 0.05],
            'threshold_method': ['edge_otsu', 'edge_otsu', 'otsu'],
            'satname': ['L8', 'S2', 'S2']}


@pytest.fixture
def transects():
    # shore-normal transects pointing north from the origin
    return {'1': np.array([[0.0, 0.0], [0.0, 200.0]]),
            '2': np.array([[50.0, 0.0], [50.0, 200.0]])}


@pytest.fixture
def time_series():
    # 3 transects: accreting at 2 m/year, eroding at 1 m/year and mostly empty
    dates = [datetime(2000, 1, 1, tzinfo=pytz.utc) + timedelta(days=365.25*k) for k in range(6)]
    years = np.arange(6, dtype=float)
    return pd.DataFrame({'dates': dates,
                         'satname': ['L5', 'L5', 'L7', 'L7', 'L8', 'L8'],
                         'A': 100 + 2*years,
                         'B': 100 - years,
                         'C': [100, np.nan, np.nan, np.nan, np.nan, 110]})


@pytest.fixture
def shoreline_settings():
    return {'output_epsg': 32756,
            'threshold_method': 'otsu',
            'n_buckets': 256,
            'canny_sigma': 1.0,
            'edge_buffer': 30,
            'min_edge_pixels': 50,
            'min_length_sl': 200,
            'dist_clouds': 300,
            'max_dist_ref': 100,
            'reference_shoreline': None,
            'save_figure': False,
            'inputs': None}


@pytest.fixture
def step_image():
    # 100x100 water index, water (positive) on the left half, land on the right half
    cols = np.arange(100)
    row = 0.5*np.tanh((49.5 - cols)/3)
    return np.tile(row, (100, 1))


@pytest.fixture
def georef():
    # 10 m pixels, top-left pixel centre at (0, 1000)
    return np.array([0.0, 10.0, 0.0, 1000.0, 0.0, -10.0])
