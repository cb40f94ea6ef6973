import os
import warnings

import numpy as np
import pytest
from skimage.filters import threshold_otsu as skimage_otsu

from shorechange import SDS_gee, SDS_shoreline, SDS_tools


@pytest.fixture
def bimodal_values():
    rng = np.random.default_rng(0)
    return np.concatenate([rng.normal(-0.3, 0.15, 5000), rng.normal(0.3, 0.15, 5000)])


def test_histogram(bimodal_values):
    values = np.append(bimodal_values, [np.nan, np.nan])
    counts, means = SDS_shoreline.histogram(values, 128)
    assert len(counts) == 128
    assert np.sum(counts) == len(bimodal_values)
    assert np.min(means[counts > 0]) >= np.min(bimodal_values)
    assert np.max(means[counts > 0]) <= np.max(bimodal_values)


def test_histogram_constant_and_empty():
    counts, means = SDS_shoreline.histogram(np.ones(10))
    assert list(counts) == [10]
    assert list(means) == [1.0]
    counts, means = SDS_shoreline.histogram(np.array([np.nan]))
    assert len(counts) == 0


def test_otsu_threshold_between_modes(bimodal_values):
    t = SDS_shoreline.threshold_otsu(bimodal_values)
    assert -0.1 < t < 0.1
    assert np.min(bimodal_values) <= t <= np.max(bimodal_values)


def test_otsu_threshold_matches_skimage(bimodal_values):
    t = SDS_shoreline.threshold_otsu(bimodal_values, 256)
    assert t == pytest.approx(skimage_otsu(bimodal_values, nbins=256), abs=0.03)


def test_otsu_threshold_discrete_histogram():
    counts = np.array([100, 50, 0, 0, 100, 50])
    means = np.array([-0.5, -0.45, -0.2, 0.1, 0.4, 0.45])
    # the split is in the empty buckets, the threshold is the mean of the last land bucket
    assert SDS_shoreline.otsu_threshold(counts, means) == pytest.approx(-0.45)


def test_otsu_threshold_not_found():
    assert np.isnan(SDS_shoreline.otsu_threshold([], []))
    assert np.isnan(SDS_shoreline.otsu_threshold([0, 10, 0], [0.1, 0.2, 0.3]))
    assert np.isnan(SDS_shoreline.threshold_otsu(np.ones(50)))


def test_edge_based_threshold(step_image, shoreline_settings):
    rng = np.random.default_rng(1)
    im_index = step_image + rng.normal(0, 0.01, step_image.shape)
    cloud_mask = np.zeros(im_index.shape, dtype=bool)
    im_ref_buffer = np.ones(im_index.shape, dtype=bool)
    t, method = SDS_shoreline.edge_based_threshold(im_index, cloud_mask, im_ref_buffer, 10,
                                                   shoreline_settings)
    assert method == 'edge_otsu'
    assert -0.5 < t < 0.5


def test_edge_based_threshold_fallback(step_image, shoreline_settings):
    shoreline_settings['min_edge_pixels'] = 10**9
    cloud_mask = np.zeros(step_image.shape, dtype=bool)
    im_ref_buffer = np.ones(step_image.shape, dtype=bool)
    t, method = SDS_shoreline.edge_based_threshold(step_image, cloud_mask, im_ref_buffer, 10,
                                                   shoreline_settings)
    assert method == 'otsu'
    assert not np.isnan(t)


def test_compute_threshold_invalid_method(step_image, shoreline_settings):
    shoreline_settings['threshold_method'] = 'kmeans'
    mask = np.zeros(step_image.shape, dtype=bool)
    with pytest.raises(ValueError):
        SDS_shoreline.compute_threshold(step_image, mask, ~mask, 10, shoreline_settings)


def test_water_mask():
    im_index = np.array([[0.5, -0.5, np.nan]])
    assert list(SDS_shoreline.water_mask(im_index, 0.0)[0]) == [True, False, False]


def test_process_contours():
    contours = [np.array([[0.0, 0.0], [np.nan, 1.0], [1.0, 1.0]]),
                np.array([[np.nan, 0.0], [1.0, 1.0]])]
    processed = SDS_shoreline.process_contours(contours)
    assert len(processed) == 1
    assert processed[0].shape == (2, 2)


def test_create_shoreline_buffer(georef, shoreline_settings):
    y = np.arange(0, 1000, 5.0)
    shoreline_settings['reference_shoreline'] = np.column_stack([495*np.ones(len(y)), y])
    im_buffer = SDS_shoreline.create_shoreline_buffer((100, 100), georef, 32756, 10,
                                                      shoreline_settings)
    assert im_buffer.shape == (100, 100)
    assert im_buffer[50, 49]
    assert not im_buffer[50, 0]
    assert not im_buffer[50, 99]


def test_create_shoreline_buffer_no_reference(georef, shoreline_settings):
    im_buffer = SDS_shoreline.create_shoreline_buffer((10, 10), georef, 32756, 10,
                                                      shoreline_settings)
    assert np.all(im_buffer)


def test_extract_shoreline(step_image, georef, shoreline_settings):
    cloud_mask = np.zeros(step_image.shape, dtype=bool)
    im_nodata = np.zeros(step_image.shape, dtype=bool)
    shoreline, t, method = SDS_shoreline.extract_shoreline(step_image, cloud_mask, im_nodata,
                                                           georef, 32756, 10, shoreline_settings)
    assert method == 'otsu'
    assert len(shoreline) > 0
    # the interface is between columns 49 and 50 (X = 495 m)
    assert np.all(np.abs(shoreline[:, 0] - 495) < 60)


def test_extract_shoreline_away_from_clouds(step_image, georef, shoreline_settings):
    cloud_mask = np.zeros(step_image.shape, dtype=bool)
    cloud_mask[:10, 40:60] = True
    im_index = step_image.copy()
    im_index[cloud_mask] = np.nan
    im_nodata = np.zeros(step_image.shape, dtype=bool)
    shoreline, t, method = SDS_shoreline.extract_shoreline(im_index, cloud_mask, im_nodata,
                                                           georef, 32756, 10, shoreline_settings)
    assert len(shoreline) > 0
    rows, cols = np.where(cloud_mask)
    cloud_xy = np.column_stack([cols*10.0, 1000 - rows*10.0])
    dist = np.min(np.linalg.norm(shoreline[:, None, :] - cloud_xy[None, :, :], axis=2), axis=1)
    assert np.all(dist >= shoreline_settings['dist_clouds'])


def test_extract_shoreline_threshold_not_found(georef, shoreline_settings):
    im_index = np.zeros((20, 20))
    mask = np.zeros(im_index.shape, dtype=bool)
    shoreline, t, method = SDS_shoreline.extract_shoreline(im_index, mask, mask, georef, 32756, 10,
                                                           shoreline_settings)
    assert np.isnan(t)
    assert shoreline.shape == (0, 2)


def test_plot_detection(tmp_path, step_image, georef, shoreline_settings):
    shoreline_settings['inputs'] = {'sitename': 'SITE', 'filepath': str(tmp_path)}
    shoreline = np.array([[495.0, 500.0], [495.0, 400.0]])
    fn = SDS_shoreline.plot_detection(step_image, np.zeros(step_image.shape, dtype=bool), shoreline,
                                      0.0, georef, 32756, shoreline_settings,
                                      '2020-01-01-00-00-00', 'L8')
    assert os.path.exists(fn)


def test_extract_shoreline_default_settings_geographic_output(step_image):
    # lengths and distances are metres even when the output is in lon/lat
    settings = SDS_tools.get_settings(SDS_gee.DEFAULT_SETTINGS, {})
    assert settings['output_epsg'] == 4326
    georef = np.array([342000.0, 10.0, 0.0, 6266000.0, 0.0, -10.0])
    cloud_mask = np.zeros(step_image.shape, dtype=bool)
    cloud_mask[:5, 90:] = True
    im_nodata = np.zeros(step_image.shape, dtype=bool)
    shoreline, t, method = SDS_shoreline.extract_shoreline(step_image, cloud_mask, im_nodata,
                                                           georef, 32756, 10, settings)
    assert method == 'edge_otsu'
    assert not np.isnan(t)
    assert len(shoreline) > 0
    assert np.all((shoreline[:, 0] > 150) & (shoreline[:, 0] < 152))
    assert np.all((shoreline[:, 1] > -35) & (shoreline[:, 1] < -33))


def test_process_shoreline_distances_in_image_crs(georef, shoreline_settings):
    # a 990 m long contour along column 49.5, a cloud pixel 305 m away from its top
    contours = [np.column_stack([np.arange(0, 100, 1.0), 49.5*np.ones(100)])]
    cloud_mask = np.zeros((100, 100), dtype=bool)
    cloud_mask[0, 80] = True
    im_nodata = np.zeros((100, 100), dtype=bool)
    shoreline_settings['output_epsg'] = 4326
    shoreline_settings['min_length_sl'] = 500
    shoreline_settings['dist_clouds'] = 350
    georef_utm = georef + np.array([342000.0, 0, 0, 6265000.0, 0, 0])
    shoreline = SDS_shoreline.process_shoreline(contours, cloud_mask, im_nodata, georef_utm,
                                                32756, shoreline_settings)
    shoreline_utm = SDS_tools.convert_epsg(shoreline, 4326, 32756)
    # the points within 350 m of the cloud pixel (rows 0 to about 17) are removed
    assert 70 < len(shoreline) < 90
    assert np.max(shoreline_utm[:, 1]) < 6266000 - 150
    shoreline_settings['min_length_sl'] = 1000
    empty = SDS_shoreline.process_shoreline(contours, cloud_mask, im_nodata, georef_utm, 32756,
                                            shoreline_settings)
    assert empty.shape == (0, 2)


def test_binary_dilation_without_deprecation_warning(step_image, georef, shoreline_settings):
    y = np.arange(0, 1000, 5.0)
    shoreline_settings['reference_shoreline'] = np.column_stack([495*np.ones(len(y)), y])
    mask = np.zeros(step_image.shape, dtype=bool)
    with warnings.catch_warnings():
        warnings.simplefilter('error', FutureWarning)
        im_buffer = SDS_shoreline.create_shoreline_buffer(step_image.shape, georef, 32756, 10,
                                                          shoreline_settings)
        t, method = SDS_shoreline.edge_based_threshold(step_image, mask, im_buffer, 10,
                                                       shoreline_settings)
    # 100 m buffer on each side of the reference shoreline
    assert np.sum(im_buffer[50]) == 21
    assert method == 'edge_otsu'
