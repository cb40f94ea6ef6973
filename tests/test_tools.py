import json
import logging
import os
from datetime import datetime, timedelta

import numpy as np
import pytest
import pytz

from shorechange import SDS_tools
from shorechange.exceptions import InvalidSettings


def test_smallest_rectangle(polygon):
    rectangle = SDS_tools.smallest_rectangle(polygon)
    coords = np.array(rectangle[0])
    assert len(rectangle[0]) == 5
    assert rectangle[0][0] == rectangle[0][-1]
    coords_in = np.array(polygon[0])
    assert np.min(coords[:, 0]) == pytest.approx(np.min(coords_in[:, 0]))
    assert np.max(coords[:, 1]) == pytest.approx(np.max(coords_in[:, 1]))


def test_convert_pix2world(georef):
    # row 1, column 2
    points = np.array([[1.0, 2.0]])
    world = SDS_tools.convert_pix2world(points, georef)
    assert world[0, 0] == pytest.approx(20.0)
    assert world[0, 1] == pytest.approx(990.0)
    # list of arrays
    world_list = SDS_tools.convert_pix2world([points, points], georef)
    assert len(world_list) == 2


def test_convert_world2pix(georef):
    pix = SDS_tools.convert_world2pix(np.array([[20.0, 990.0]]), georef)
    # column first, row second
    assert pix[0, 0] == pytest.approx(2.0)
    assert pix[0, 1] == pytest.approx(1.0)


def test_convert_invalid_type(georef):
    with pytest.raises(TypeError):
        SDS_tools.convert_pix2world((1, 2), georef)
    with pytest.raises(TypeError):
        SDS_tools.convert_epsg((1, 2), 4326, 3857)


def test_convert_epsg():
    points = SDS_tools.convert_epsg(np.array([[0.0, 0.0], [1.0, 0.0]]), 4326, 3857)
    assert points.shape == (2, 2)
    assert points[0, 0] == pytest.approx(0.0, abs=1e-6)
    assert points[1, 0] == pytest.approx(111319.49, rel=1e-4)
    empty = SDS_tools.convert_epsg(np.zeros((0, 2)), 4326, 3857)
    assert empty.shape == (0, 2)


def test_nd_index():
    im1 = np.array([[3.0, 3.0]])
    im2 = np.array([[1.0, 1.0]])
    cloud_mask = np.array([[False, True]])
    im_nd = SDS_tools.nd_index(im1, im2, cloud_mask)
    assert im_nd[0, 0] == pytest.approx(0.5)
    assert np.isnan(im_nd[0, 1])


def test_merge_output():
    d0 = datetime(2020, 1, 1, tzinfo=pytz.utc)
    output = {'L8': {'dates': [d0 + timedelta(days=10)], 'shorelines': [np.zeros((2, 2))]},
              'S2': {'dates': [d0, d0 + timedelta(days=20)],
                     'shorelines': [np.ones((3, 2)), np.ones((4, 2))]}}
    output_all = SDS_tools.merge_output(output)
    assert output_all['satname'] == ['S2', 'L8', 'S2']
    assert output_all['dates'] == sorted(output_all['dates'])
    assert len(output_all['shorelines'][0]) == 3


def test_merge_output_empty():
    assert SDS_tools.merge_output({}) == {}


def test_remove_duplicates(output_dict):
    output = {key: list(output_dict[key]) for key in output_dict.keys()}
    # same satellite, same day, shorter shoreline
    output['dates'].append(output['dates'][0] + timedelta(minutes=1))
    output['shorelines'].append(np.zeros((5, 2)))
    for key in ['filename', 'cloud_cover', 'geoaccuracy', 'idx', 'MNDWI_threshold',
                'threshold_method', 'satname']:
        output[key].append(output[key][0])
    output_clean = SDS_tools.remove_duplicates(output)
    assert len(output_clean['dates']) == 3
    assert len(output_clean['shorelines'][0]) == 201


def test_remove_inaccurate_georef():
    output = {'geoaccuracy': [5, 15, 'PASSED', 'FAILED'], 'dates': [1, 2, 3, 4]}
    output_clean = SDS_tools.remove_inaccurate_georef(output, 10)
    assert output_clean['dates'] == [1, 3]


def test_output_to_gdf(output_dict):
    gdf = SDS_tools.output_to_gdf(output_dict, 'lines', 32756)
    # the empty shoreline is skipped
    assert len(gdf) == 2
    assert list(gdf['satname']) == ['L8', 'S2']
    assert gdf.crs.to_epsg() == 32756
    gdf_points = SDS_tools.output_to_gdf(output_dict, 'points')
    assert gdf_points.geometry.iloc[0].geom_type == 'MultiPoint'


def test_output_to_gdf_no_shorelines(output_dict):
    output_dict['shorelines'] = [np.zeros((0, 2))]*3
    assert SDS_tools.output_to_gdf(output_dict) is None


def test_output_to_gdf_invalid_geomtype(output_dict):
    with pytest.raises(ValueError):
        SDS_tools.output_to_gdf(output_dict, 'polygons')


def test_transects_geojson(tmp_path, transects):
    gdf = SDS_tools.transects_to_gdf(transects, 32756)
    fn = os.path.join(tmp_path, 'transects.geojson')
    gdf.to_file(fn, driver='GeoJSON')
    transects_read = SDS_tools.transects_from_geojson(fn)
    assert sorted(transects_read.keys()) == ['1', '2']
    assert np.allclose(transects_read['2'][-1], [50.0, 200.0])


def test_polygon_from_kml(tmp_path):
    fn = os.path.join(tmp_path, 'site.kml')
    with open(fn, 'w') as f:
        f.write('<kml><Polygon><coordinates>151.3,-33.7,0 151.4,-33.7,0 151.4,-33.8,0 '
                '151.3,-33.7,0</coordinates></Polygon></kml>')
    polygon = SDS_tools.polygon_from_kml(fn)
    assert len(polygon[0]) == 4
    assert polygon[0][1] == [151.4, -33.7]


def test_polygon_from_geojson(tmp_path, polygon):
    fn = os.path.join(tmp_path, 'site.geojson')
    feature = {'type': 'Feature', 'properties': {},
               'geometry': {'type': 'Polygon', 'coordinates': polygon}}
    with open(fn, 'w') as f:
        json.dump({'type': 'FeatureCollection', 'features': [feature]}, f)
    polygon_read = SDS_tools.polygon_from_geojson(fn)
    assert len(polygon_read[0]) == len(polygon[0])
    assert np.allclose(polygon_read[0], polygon[0])


def test_get_closest_datapoint():
    d0 = datetime(2020, 1, 1, tzinfo=pytz.utc)
    dates_ts = [d0 + timedelta(hours=k) for k in range(10)]
    values = np.arange(10, dtype=float)
    dates = [d0 + timedelta(hours=2, minutes=20), d0 + timedelta(hours=5, minutes=40)]
    assert list(SDS_tools.get_closest_datapoint(dates, dates_ts, values)) == [2.0, 6.0]
    with pytest.raises(ValueError):
        SDS_tools.get_closest_datapoint([d0 - timedelta(hours=1)], dates_ts, values)


def test_get_settings():
    defaults = {'a': 1, 'b': [1, 2]}
    settings = SDS_tools.get_settings(defaults, {'a': 2})
    assert settings == {'a': 2, 'b': [1, 2]}
    settings['b'].append(3)
    assert defaults['b'] == [1, 2]
    with pytest.raises(InvalidSettings) as excinfo:
        SDS_tools.get_settings(defaults, {'c': 3})
    assert 'c' in str(excinfo.value)


def test_read_settings(tmp_path):
    fn = os.path.join(tmp_path, 'settings.json')
    with open(fn, 'w') as f:
        json.dump({'cloud_thresh': 0.3}, f)
    assert SDS_tools.read_settings(fn) == {'cloud_thresh': 0.3}
    with open(fn, 'w') as f:
        json.dump([1, 2], f)
    with pytest.raises(InvalidSettings):
        SDS_tools.read_settings(fn)


def test_setup_logging(tmp_path):
    log_file = SDS_tools.setup_logging(str(tmp_path))
    try:
        logging.getLogger('shorechange.test').info('hello')
        assert os.path.exists(log_file)
        assert os.path.basename(log_file).startswith('log_')
        assert os.path.dirname(log_file).endswith('logs')
    finally:
        root = logging.getLogger()
        for handler in list(root.handlers):
            if isinstance(handler, logging.FileHandler) and handler.baseFilename == log_file:
                root.removeHandler(handler)
                handler.close()
