import os
from datetime import datetime, timedelta

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import pytz
from shapely.geometry import Point

from shorechange import SDS_dsas
from shorechange.exceptions import MissingColumnsError

D0 = datetime(2000, 1, 1, tzinfo=pytz.utc)


@pytest.fixture
def rates_table():
    return pd.DataFrame({'TransOrder': [1, 2, 3],
                         'nsm': [10.0, -5.0, 0.5],
                         'EPR': [1.0, -0.5, 0.05],
                         'LRR': [1.1, -0.6, 0.02],
                         'LCI90': [0.2, 0.3, 0.1]})


@pytest.fixture
def intersects():
    # transect 1 at 3 dates moving 2 m/year seaward, transect 2 at 2 dates
    dates = [D0 + timedelta(days=365.25*k) for k in range(3)]
    return pd.DataFrame({'TransectId': [1, 1, 1, 2, 2],
                         'ShorelineDate': [dates[0], dates[1], dates[2], dates[0], dates[2]],
                         'Distance': [10.0, 12.0, 14.0, 50.0, 48.0],
                         'Uncy': [5.0, 5.0, 5.0, 5.0, 5.0]})


def test_standardise_columns(rates_table):
    df = SDS_dsas.standardise_columns(rates_table)
    assert list(df.columns) == ['TransectID', 'NSM', 'EPR', 'LRR', 'LCI']


def test_standardise_columns_collision():
    df = pd.DataFrame({'TransectID': [1], 'transorder': [2], 'lci90': [0.1], 'LCI95': [0.2]})
    df = SDS_dsas.standardise_columns(df)
    assert list(df.columns) == ['TransectID', 'transorder', 'LCI', 'LCI95']


def test_check_columns():
    df = pd.DataFrame({'TransectID': [1]})
    SDS_dsas.check_columns(df, ['TransectID'])
    with pytest.raises(MissingColumnsError) as excinfo:
        SDS_dsas.check_columns(df, ['TransectID', 'Distance'], 'intersects.csv')
    assert excinfo.value.missing == ['Distance']
    assert 'intersects.csv' in str(excinfo.value)


def test_read_dsas_table_csv(tmp_path, rates_table):
    fn = os.path.join(tmp_path, 'rates.csv')
    rates_table.to_csv(fn, index=False)
    df = SDS_dsas.read_dsas_table(fn)
    assert 'TransectID' in df.columns
    assert len(df) == 3
    with pytest.raises(FileNotFoundError):
        SDS_dsas.read_dsas_table(os.path.join(tmp_path, 'missing.csv'))


def test_read_dsas_table_vector(tmp_path, rates_table):
    fn = os.path.join(tmp_path, 'rates.geojson')
    gdf = gpd.GeoDataFrame(rates_table, geometry=[Point(0, 0), Point(1, 0), Point(2, 0)],
                           crs='EPSG:4326')
    gdf.to_file(fn, driver='GeoJSON')
    df = SDS_dsas.read_dsas_table(fn)
    assert 'geometry' not in df.columns
    assert 'LCI' in df.columns
    gdf = SDS_dsas.read_dsas_table(fn, keep_geometry=True)
    assert isinstance(gdf, gpd.GeoDataFrame)


def test_compile_rates(tmp_path, rates_table):
    files = dict([])
    for period in ['1990-2000', '2000-2010']:
        files[period] = os.path.join(tmp_path, '%s.csv' % period)
        rates_table.to_csv(files[period], index=False)
    df = SDS_dsas.compile_rates(files, 'NARRA')
    assert len(df) == 6
    assert list(df.columns[:3]) == ['site', 'period', 'TransectID']
    assert list(df['period'].unique()) == ['1990-2000', '2000-2010']
    with pytest.raises(ValueError):
        SDS_dsas.compile_rates({}, 'NARRA')


def test_compile_rates_missing_transect_id(tmp_path):
    fn = os.path.join(tmp_path, 'rates.csv')
    pd.DataFrame({'EPR': [1.0]}).to_csv(fn, index=False)
    with pytest.raises(MissingColumnsError):
        SDS_dsas.compile_rates({'all': fn}, 'NARRA')


def test_intersects_to_time_series(intersects):
    df_ts, df_unc = SDS_dsas.intersects_to_time_series(intersects)
    assert list(df_ts.columns) == ['dates', '1', '2']
    assert len(df_ts) == 3
    assert list(df_ts['1']) == pytest.approx([10.0, 12.0, 14.0])
    assert np.isnan(df_ts['2'].iloc[1])
    assert df_unc.shape == (3, 2)
    assert np.isnan(df_unc['2'].iloc[1])
    assert df_unc['1'].iloc[0] == 5.0


def test_intersects_to_time_series_no_uncertainty(intersects):
    df_ts, df_unc = SDS_dsas.intersects_to_time_series(intersects.drop(columns='Uncy'))
    assert df_unc is None
    with pytest.raises(MissingColumnsError):
        SDS_dsas.intersects_to_time_series(intersects.drop(columns='Distance'))


def test_recompute_rates(intersects):
    df_rates = SDS_dsas.recompute_rates(intersects, {'min_shorelines': 2})
    rates = df_rates.set_index('TransectID')
    assert rates.loc['1', 'LRR'] == pytest.approx(2.0)
    assert rates.loc['1', 'WLR'] == pytest.approx(2.0)
    assert rates.loc['2', 'EPR'] == pytest.approx(-1.0)
    assert rates.loc['2', 'NSMunc'] == pytest.approx(np.sqrt(50))


def test_compare_rates(rates_table):
    df_rates = pd.DataFrame({'TransectID': ['1', '2', '4'],
                             'NSM': [9.0, -5.0, 1.0],
                             'EPR': [1.0, -0.4, 0.1],
                             'LRR': [1.0, -0.6, 0.0]})
    df = SDS_dsas.compare_rates(rates_table, df_rates)
    assert list(df['TransectID']) == ['1', '2']
    assert df['NSM_diff'].iloc[0] == pytest.approx(-1.0)
    assert df['EPR_diff'].iloc[1] == pytest.approx(0.1)
    assert 'LRR_dsas' in df.columns


def test_save_compilation(tmp_path, rates_table):
    fn = os.path.join(tmp_path, 'compiled', 'rates_all.csv')
    SDS_dsas.save_compilation(rates_table, fn)
    assert os.path.exists(fn)
    assert len(pd.read_csv(fn)) == 3
