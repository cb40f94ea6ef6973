import os
from datetime import datetime, timedelta

import numpy as np
import pandas as pd
import pytest
import pytz

from shorechange import SDS_errors
from shorechange.exceptions import InsufficientDataError, InvalidSettings

D0 = datetime(2020, 1, 1, tzinfo=pytz.utc)


def test_match_reference():
    dates_ref = [D0, D0 + timedelta(days=10)]
    chain_ref = np.array([10.0, 20.0])
    dates_sat = [D0 + timedelta(days=1), D0 + timedelta(days=5), D0 + timedelta(days=30),
                 D0 + timedelta(days=2)]
    chain_sat = np.array([11.0, 16.0, 30.0, np.nan])
    chain_int = SDS_errors.match_reference(dates_sat, chain_sat, dates_ref, chain_ref,
                                           {'min_days': 3, 'max_days': 10})
    # closest survey, interpolation, no survey within max_days, NaN position
    assert chain_int[0] == pytest.approx(10.0)
    assert chain_int[1] == pytest.approx(15.0)
    assert np.isnan(chain_int[2])
    assert np.isnan(chain_int[3])


def test_match_reference_not_bracketed():
    # the closest survey is 5 days before, no survey after
    chain_int = SDS_errors.match_reference([D0 + timedelta(days=5)], [1.0], [D0], [2.0],
                                           {'min_days': 3, 'max_days': 10})
    assert np.isnan(chain_int[0])


def test_error_statistics():
    errors = SDS_errors.error_statistics([1.0, 2.0, 3.0, 4.0, np.nan], [0.0, 2.0, 2.0, 4.0, 1.0])
    assert errors['n'] == 4
    assert errors['rmse'] == pytest.approx(np.sqrt(0.5))
    assert errors['mean'] == pytest.approx(0.5)
    assert errors['std'] == pytest.approx(0.5)
    assert errors['median'] == pytest.approx(0.5)
    assert 0 < errors['R2'] <= 1


def test_error_statistics_empty():
    with pytest.raises(InsufficientDataError):
        SDS_errors.error_statistics([np.nan], [1.0])


def test_compute_rmse():
    dates_sat = [D0 + timedelta(days=k) for k in [0, 20, 40, 60]]
    df_sat = pd.DataFrame({'dates': dates_sat, 'satname': ['L8', 'S2', 'L8', 'S2'],
                           '1': [11.0, 22.0, 29.0, 41.0], '2': [5.0, 5.0, 5.0, 5.0]})
    df_ref = pd.DataFrame({'dates': [D0 + timedelta(days=k) for k in [0, 20, 40, 60]],
                           '1': [10.0, 20.0, 30.0, 40.0], '3': [1.0, 1.0, 1.0, 1.0]})
    rmse = SDS_errors.compute_rmse(df_sat, df_ref, {'min_days': 3, 'max_days': 10})
    assert list(rmse['transects']['TransectID']) == ['1']
    assert rmse['all']['n'].iloc[0] == 4
    assert rmse['all']['rmse'].iloc[0] == pytest.approx(np.sqrt((1 + 4 + 1 + 1)/4))
    assert sorted(rmse['satellites']['satname']) == ['L8', 'S2']


def test_compute_rmse_no_common_transects():
    df_sat = pd.DataFrame({'dates': [D0], 'A': [1.0]})
    df_ref = pd.DataFrame({'dates': [D0], 'B': [1.0]})
    with pytest.raises(InsufficientDataError):
        SDS_errors.compute_rmse(df_sat, df_ref)


def test_positional_uncertainty():
    assert SDS_errors.positional_uncertainty([3.0, 4.0]) == pytest.approx(5.0)
    total = SDS_errors.positional_uncertainty([np.array([3.0, 6.0]), np.array([4.0, 8.0])])
    assert list(total) == pytest.approx([5.0, 10.0])


def test_shoreline_uncertainty(output_dict):
    uncertainty = SDS_errors.shoreline_uncertainty(output_dict)
    assert uncertainty[0] == pytest.approx(np.sqrt(30**2 + 12**2))
    assert uncertainty[1] == pytest.approx(np.sqrt(10**2 + 10**2))
    assert uncertainty[2] == pytest.approx(np.sqrt(10**2 + 20**2))
    uncertainty = SDS_errors.shoreline_uncertainty(output_dict, {'extraction_rmse': 10, 'tide_error': 5})
    assert uncertainty[1] == pytest.approx(np.sqrt(10**2 + 10**2 + 10**2 + 5**2))


def test_shoreline_uncertainty_unknown_setting(output_dict):
    with pytest.raises(InvalidSettings):
        SDS_errors.shoreline_uncertainty(output_dict, {'tide_errors': 5})


def test_plot_errors(tmp_path):
    fn = os.path.join(tmp_path, 'errors.jpg')
    errors = np.array([-5.0, 2.0, 3.0, -1.0, 0.5, 8.0])
    SDS_errors.plot_errors(errors, ['L8', 'L8', 'S2', 'S2', 'S2', 'L8'], fn)
    assert os.path.exists(fn)
