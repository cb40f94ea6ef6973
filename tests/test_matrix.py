import os

import numpy as np
import pandas as pd
import pytest

from shorechange import SDS_matrix
from shorechange.exceptions import InvalidSettings


@pytest.fixture
def rates_table():
    return pd.DataFrame({'site': ['NARRA']*6,
                         'period': ['p1']*3 + ['p2']*3,
                         'TransectID': [1, 2, 3]*2,
                         'EPR': [-1.0, 0.5, 0.05, -3.0, 1.0, np.nan],
                         'EPRunc': [0.1]*6,
                         'LRR': [-1.2, 0.4, 0.0, -2.5, 1.1, np.nan],
                         'LCI': [0.2]*6})


def test_classify_rates():
    rates = [-3.0, -1.0, 0.5, 0.05, np.nan]
    classes = SDS_matrix.classify_rates(rates, [0.1]*5, {'high_erosion': -2.0})
    assert list(classes[:4]) == ['high erosion', 'erosion', 'accretion', 'stable']
    assert classes[4] is np.nan or pd.isna(classes[4])


def test_classify_rates_stable_threshold():
    classes = SDS_matrix.classify_rates([-0.5, 0.05, 0.0, 2.0], settings={'stable_threshold': 0.1})
    assert list(classes) == ['erosion', 'stable', 'stable', 'accretion']
    # without threshold or uncertainty only a null rate is stable
    classes = SDS_matrix.classify_rates([-0.5, 0.05, 0.0])
    assert list(classes) == ['erosion', 'accretion', 'stable']


def test_classify_rates_unknown_setting():
    with pytest.raises(InvalidSettings):
        SDS_matrix.classify_rates([-1.0, 1.0], settings={'stable_treshold': 0.1})


def test_class_labels():
    assert SDS_matrix.class_labels(SDS_matrix.DEFAULT_SETTINGS) == ['erosion', 'accretion', 'stable']
    settings = dict(SDS_matrix.DEFAULT_SETTINGS, high_erosion=-2.0)
    assert SDS_matrix.class_labels(settings)[0] == 'high erosion'


def test_rate_matrix(rates_table):
    matrix = SDS_matrix.rate_matrix(rates_table, 'EPR')
    assert list(matrix.columns) == ['p1', 'p2']
    assert list(matrix.index) == [1, 2, 3]
    assert matrix.loc[1, 'p2'] == pytest.approx(-3.0)
    assert np.isnan(matrix.loc[3, 'p2'])


def test_summary_matrix(rates_table):
    summary = SDS_matrix.summary_matrix(rates_table, 'EPR', uncertainty='EPRunc')
    assert list(summary['period']) == ['p1', 'p2']
    p1 = summary.iloc[0]
    assert p1['n'] == 3
    assert p1['mean'] == pytest.approx(-0.15)
    assert p1['pct_erosion'] == pytest.approx(100/3)
    assert p1['pct_stable'] == pytest.approx(100/3)
    p2 = summary.iloc[1]
    assert p2['n'] == 2
    assert p2['pct_erosion'] == pytest.approx(50.0)
    assert p2['pct_stable'] == pytest.approx(0.0)
    assert 'pct_high_erosion' not in summary.columns


def test_summary_matrix_high_erosion(rates_table):
    summary = SDS_matrix.summary_matrix(rates_table, 'EPR', by='period', settings={'high_erosion': -2.0})
    assert summary['pct_high_erosion'].iloc[1] == pytest.approx(50.0)
    assert summary['pct_erosion'].iloc[1] == pytest.approx(0.0)


def test_assemble_matrices(rates_table):
    matrices = SDS_matrix.assemble_matrices(rates_table)
    # no NSM in the table
    assert sorted(matrices.keys()) == ['EPR', 'EPR_class', 'EPR_summary', 'LRR', 'LRR_class', 'LRR_summary']
    assert matrices['EPR_class'].loc[1, 'p1'] == 'erosion'
    assert matrices['EPR_class'].loc[3, 'p1'] == 'stable'
    assert matrices['LRR_class'].loc[2, 'p1'] == 'accretion'


def test_assemble_matrices_several_sites(rates_table):
    other = rates_table.copy()
    other['site'] = 'COLLAROY'
    matrices = SDS_matrix.assemble_matrices(pd.concat([rates_table, other], ignore_index=True),
                                            {'rates': ['EPR']})
    assert list(matrices['EPR'].index.names) == ['site', 'TransectID']
    assert len(matrices['EPR_summary']) == 4


def test_save_matrices(tmp_path, rates_table):
    matrices = SDS_matrix.assemble_matrices(rates_table, {'rates': ['EPR']})
    filepath = os.path.join(tmp_path, 'matrices')
    fns = SDS_matrix.save_matrices(matrices, filepath, 'NARRA')
    assert len(fns) == 3
    assert all([os.path.exists(_) for _ in fns])
    assert os.path.basename(fns[0]) == 'NARRA_EPR.csv'
    df = pd.read_csv(os.path.join(filepath, 'NARRA_EPR_summary.csv'))
    assert list(df.columns[:2]) == ['site', 'period']
