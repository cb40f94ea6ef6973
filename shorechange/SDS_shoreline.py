"""
This module contains all the functions needed for extracting satellite-derived
shorelines (SDS) from a water index image: Otsu thresholding on a histogram
(global or restricted to the neighbourhood of the image edges) and contouring
of the water/land interface

Author: Kilian Vos, Water Research Laboratory, University of New South Wales
"""

# load modules
import os
import logging
import numpy as np
import matplotlib.pyplot as plt

# image processing modules
import skimage.feature as feature
import skimage.measure as measure
import skimage.morphology as morphology
from scipy import ndimage
from scipy.spatial import cKDTree
from shapely.geometry import LineString

# other modules
from matplotlib import gridspec

# shorechange modules
from shorechange import SDS_tools

np.seterr(all='ignore') # raise/ignore divisions by 0 and nans

logger = logging.getLogger(__name__)

# default parameters for the shoreline mapping
DEFAULT_SETTINGS = {
    'output_epsg': 4326,            # epsg code of the output shorelines
    'threshold_method': 'edge_otsu',# 'otsu' (whole image) or 'edge_otsu' (pixels around edges)
    'n_buckets': 256,               # number of buckets of the histogram used by Otsu
    'canny_sigma': 1.0,             # std of the gaussian filter applied before Canny
    'edge_buffer': 30,              # distance (metres) around the edges used to sample pixels
    'min_edge_pixels': 50,          # minimum number of pixels around the edges
    'min_length_sl': 500,           # minimum length (metres) of a shoreline contour
    'dist_clouds': 300,             # distance (metres) around clouds where shoreline is not mapped
    'max_dist_ref': 100,            # max distance (metres) from the reference shoreline
    'reference_shoreline': None,    # np.array with the coordinates of a reference shoreline
    'save_figure': False,           # save a .jpg of each detection
    'inputs': None,                 # inputs dict (sitename, filepath, polygon, dates, sat_list)
    }

###################################################################################################
# OTSU THRESHOLD
###################################################################################################

def histogram(values, n_buckets=256):
    """
    Computes the histogram of a set of values in the same form as returned by
    the Earth Engine reducer ee.Reducer.histogram: the number of values in
    each bucket and the mean of the values falling in each bucket.

    Arguments:
    -----------
    values: np.array
        pixel intensities (NaNs are ignored)
    n_buckets: int
        number of buckets of equal width between the min and max value

    Returns:
    -----------
    counts: np.array
        number of values in each bucket
    means: np.array
        mean value of each bucket (bucket centre for empty buckets)

    """

    values = np.asarray(values, dtype=float).flatten()
    values = values[np.isfinite(values)]
    if len(values) == 0:
        return np.array([]), np.array([])
    vmin, vmax = np.min(values), np.max(values)
    if vmin == vmax:
        return np.array([len(values)]), np.array([vmin])
    # bucket index of each value, the max value falls in the last bucket
    width = (vmax - vmin)/n_buckets
    idx = np.floor((values - vmin)/width).astype(int)
    idx = np.clip(idx, 0, n_buckets-1)
    counts = np.bincount(idx, minlength=n_buckets).astype(float)
    sums = np.bincount(idx, weights=values, minlength=n_buckets)
    centres = vmin + width*(np.arange(n_buckets) + 0.5)
    means = np.where(counts > 0, sums/np.maximum(counts, 1), centres)

    return counts, means

def otsu_threshold(counts, means):
    """
    Otsu's method on a histogram: finds the threshold that maximises the
    between-class variance of the two classes (water and land) obtained
    by splitting the histogram.

    Each possible split is visited, for the split after bucket i the classes
    are A = buckets [0, i] and B = buckets [i+1, n-1], and the between-class
    sum of squares is nA*(mA - m)**2 + nB*(mB - m)**2.

    Arguments:
    -----------
    counts: np.array
        number of values in each bucket
    means: np.array
        mean value of each bucket

    Returns:
    -----------
    threshold: float
        mean of the last bucket of the lower class for the best split,
        np.nan if no threshold could be found (less than 2 non-empty buckets)

    """

    counts = np.asarray(counts, dtype=float)
    means = np.asarray(means, dtype=float)
    # only non-empty buckets can be used to split the histogram
    idx_valid = np.logical_and(counts > 0, np.isfinite(means))
    counts = counts[idx_valid]
    means = means[idx_valid]
    if len(counts) < 2 or np.sum(counts) == 0:
        return np.nan

    size = np.sum(counts)
    total = np.sum(counts*means)
    mean = total/size

    bss_max = -np.inf
    threshold = np.nan
    a_count = 0.
    a_sum = 0.
    for i in range(len(counts)-1):
        # class A grows by one bucket at each iteration
        a_count += counts[i]
        a_sum += counts[i]*means[i]
        a_mean = a_sum/a_count
        b_count = size - a_count
        b_mean = (total - a_sum)/b_count
        bss = a_count*(a_mean - mean)**2 + b_count*(b_mean - mean)**2
        if bss > bss_max:
            bss_max = bss
            threshold = means[i]

    return threshold

def threshold_otsu(values, n_buckets=256):
    """
    Otsu threshold of a set of values (histogram with n_buckets).

    Returns np.nan if no threshold can be found.
    """
    counts, means = histogram(values, n_buckets)
    return otsu_threshold(counts, means)

def edge_based_threshold(im_index, cloud_mask, im_ref_buffer, pixel_size, settings):
    """
    Computes the Otsu threshold using only the pixels located around the edges
    of the water index image. The edges are detected with the Canny algorithm
    and dilated by settings['edge_buffer'] metres, so that the histogram is
    balanced between water and land pixels near the shoreline.

    Arguments:
    -----------
    im_index: np.array
        2D image of the water index (e.g., MNDWI)
    cloud_mask: np.array
        2D cloud mask with True where cloud pixels are
    im_ref_buffer: np.array
        binary image containing a buffer around the reference shoreline
    pixel_size: float
        size of the pixels in metres
    settings: dict with the following keys
        'canny_sigma': float
            std of the gaussian filter used by the Canny edge detector
        'edge_buffer': float
            distance in metres around the edges where pixels are sampled
        'min_edge_pixels': int
            minimum number of pixels around the edges, below that the global
            Otsu threshold is used
        'n_buckets': int
            number of buckets of the histogram

    Returns:
    -----------
    threshold: float
        Otsu threshold (np.nan if not found)
    method: str
        'edge_otsu' or 'otsu' if the method fell back to the global threshold

    """

    im_mask = np.logical_or(cloud_mask, np.isnan(im_index))
    im_valid = np.logical_and(~im_mask, im_ref_buffer)
    im_filled = np.where(im_mask, 0, im_index)
    # detect the edges on the index image
    edges = feature.canny(im_filled, sigma=settings['canny_sigma'], mask=~im_mask)
    # dilate the edges to sample pixels on both sides of the interface
    buffer_pixels = max(int(np.ceil(settings['edge_buffer']/pixel_size)), 1)
    im_edge_buffer = ndimage.binary_dilation(edges, structure=morphology.disk(buffer_pixels))
    vec = im_index[np.logical_and(im_edge_buffer, im_valid)]

    if len(vec) < settings['min_edge_pixels']:
        logger.info('Only %d pixels around the edges, using the global Otsu threshold', len(vec))
        return threshold_otsu(im_index[im_valid], settings['n_buckets']), 'otsu'

    return threshold_otsu(vec, settings['n_buckets']), 'edge_otsu'

def compute_threshold(im_index, cloud_mask, im_ref_buffer, pixel_size, settings):
    """
    Computes the water/land threshold on the index image with the method
    given in settings['threshold_method'] ('otsu' or 'edge_otsu').

    Returns the threshold (np.nan if not found) and the method actually used.
    """

    method = settings['threshold_method']
    if method == 'edge_otsu':
        return edge_based_threshold(im_index, cloud_mask, im_ref_buffer, pixel_size, settings)
    elif method == 'otsu':
        im_valid = np.logical_and(~cloud_mask, im_ref_buffer)
        return threshold_otsu(im_index[im_valid], settings['n_buckets']), 'otsu'
    else:
        raise ValueError('threshold_method can only be: otsu or edge_otsu, got %s'%method)

def water_mask(im_index, threshold):
    "boolean image with True for water pixels (index above the threshold)"
    with np.errstate(invalid='ignore'):
        return np.logical_and(~np.isnan(im_index), im_index > threshold)

###################################################################################################
# CONTOUR MAPPING FUNCTIONS
###################################################################################################

def create_shoreline_buffer(im_shape, georef, image_epsg, pixel_size, settings):
    """
    Creates a buffer around the reference shoreline. The size of the buffer is
    given by settings['max_dist_ref'].

    KV WRL 2018

    Arguments:
    -----------
    im_shape: np.array
        size of the image (rows,columns)
    georef: np.array
        vector of 6 elements [Xtr, Xscale, Xshear, Ytr, Yshear, Yscale]
    image_epsg: int
        spatial reference system of the image from which the contours were extracted
    pixel_size: int
        size of the pixel in metres (15 for Landsat, 10 for Sentinel-2)
    settings: dict with the following keys
        'output_epsg': int
            output spatial reference system
        'reference_shoreline': np.array
            coordinates of the reference shoreline
        'max_dist_ref': int
            maximum distance from the reference shoreline in metres

    Returns:
    -----------
    im_buffer: np.array
        binary image, True where the buffer is, False otherwise

    """
    im_buffer = np.ones(im_shape, dtype=bool)
    if settings.get('reference_shoreline') is None:
        return im_buffer

    # reference shoreline in image pixels (column, row), restricted to the image extent
    ref_sl = np.asarray(settings['reference_shoreline'])[:,:2]
    ref_pix = SDS_tools.convert_world2pix(SDS_tools.convert_epsg(ref_sl, settings['output_epsg'],
                                                                 image_epsg), georef)
    ref_pix = np.round(ref_pix).astype(int)
    inside = ((ref_pix[:,0] >= 0) & (ref_pix[:,0] < im_shape[1]) &
              (ref_pix[:,1] >= 0) & (ref_pix[:,1] < im_shape[0]))
    ref_pix = ref_pix[inside,:]

    im_ref = np.zeros(im_shape, dtype=bool)
    im_ref[ref_pix[:,1], ref_pix[:,0]] = True
    # max_dist_ref is in metres, the structuring element in pixels
    radius = int(np.ceil(settings['max_dist_ref']/pixel_size))
    return ndimage.binary_dilation(im_ref, structure=morphology.disk(radius))

def find_wl_contours(im_index, cloud_mask, t_otsu, im_ref_buffer):
    """
    Finds the water line by applying the Marching Squares Algorithm to contour
    the iso-value corresponding to the threshold on the water index image.

    KV WRL 2018

    Arguments:
    -----------
    im_index: np.ndarray
        Image (2D) with the water index
    cloud_mask: np.ndarray
        2D cloud mask with True where cloud pixels are
    t_otsu: float
        threshold used to map the contours
    im_ref_buffer: np.array
        Binary image containing a buffer around the reference shoreline

    Returns:
    -----------
    contours: list of np.arrays
        contains the coordinates of the contour lines (row, column)

    """

    im_index_buffer = np.copy(im_index).astype(float)
    im_index_buffer[~im_ref_buffer] = np.nan
    im_index_buffer[cloud_mask] = np.nan
    contours = measure.find_contours(im_index_buffer, t_otsu)
    # remove contours that contain NaNs (due to cloud pixels in the contour)
    contours = process_contours(contours)

    return contours

def process_contours(contours):
    """
    Remove contours that contain NaNs, usually these are contours that are in contact
    with clouds.

    KV WRL 2020

    Arguments:
    -----------
    contours: list of np.array
        image contours as detected by the function skimage.measure.find_contours

    Returns:
    -----------
    contours: list of np.array
        processed image contours (only the ones that do not contains NaNs)

    """

    contours_nonans = []
    for contour in contours:
        idx_nan = np.any(np.isnan(contour), axis=1)
        contour_temp = contour[~idx_nan]
        if len(contour_temp) > 1:
            contours_nonans.append(contour_temp)

    return contours_nonans

def _points_close_to(shoreline, im_bool, georef, distance):
    "boolean vector, True for the shoreline points (image CRS) within distance of the True pixels of im_bool"
    idx_pix = np.array(np.where(im_bool)).T
    coords = SDS_tools.convert_pix2world(idx_pix.astype(float), georef)
    tree = cKDTree(coords)
    dist, _ = tree.query(shoreline, k=1)
    return dist < distance

def process_shoreline(contours, cloud_mask, im_nodata, georef, image_epsg, settings):
    """
    Converts the contours from image coordinates to world coordinates. This function also removes the contours that:
        1. are too small to be a shoreline (based on the parameter settings['min_length_sl'])
        2. are too close to cloud pixels (based on the parameter settings['dist_clouds'])
        3. are adjacent to noData pixels

    KV WRL 2018

    Arguments:
    -----------
        contours: np.array or list of np.array
            image contours as detected by the function find_contours
        cloud_mask: np.array
            2D cloud mask with True where cloud pixels are
        im_nodata: np.array
            2D mask with True where noData pixels are
        georef: np.array
            vector of 6 elements [Xtr, Xscale, Xshear, Ytr, Yshear, Yscale]
        image_epsg: int
            spatial reference system of the image from which the contours were extracted
        settings: dict with the following keys
            'output_epsg': int
                output spatial reference system
            'min_length_sl': float
                minimum length of shoreline perimeter to be kept (in meters)
            'dist_clouds': int
                distance in metres defining a buffer around cloudy pixels where the shoreline cannot be mapped

    Returns:
    -----------
        shoreline: np.array
            array of points with the X and Y coordinates of the shoreline

    """

    if len(contours) == 0:
        return np.zeros((0,2))

    # lengths and distances are measured in the projected CRS of the image (metres),
    # output_epsg may be geographic
    contours_world = SDS_tools.convert_pix2world(contours, georef)

    # short contours are water bodies or noise, not the shoreline
    contours_long = [wl for wl in contours_world if LineString(wl).length >= settings['min_length_sl']]
    if len(contours_long) == 0:
        return np.zeros((0,2))
    shoreline = np.concatenate(contours_long, axis=0)

    # points near clouds (shadows create false edges)
    if np.sum(cloud_mask) > 0 and len(shoreline) > 0:
        shoreline = shoreline[~_points_close_to(shoreline, cloud_mask, georef, settings['dist_clouds'])]

    # points touching the no-data pixels (one Landsat pixel)
    if np.sum(im_nodata) > 0 and len(shoreline) > 0:
        shoreline = shoreline[~_points_close_to(shoreline, im_nodata, georef, 30)]

    return SDS_tools.convert_epsg(shoreline, image_epsg, settings['output_epsg'])

def extract_shoreline(im_index, cloud_mask, im_nodata, georef, image_epsg, pixel_size, settings):
    """
    Maps the shoreline on a single water index image: threshold with Otsu's
    method, contour the threshold iso-line and convert it to world coordinates.

    Arguments:
    -----------
    im_index: np.array
        2D water index image (NaN where there is no data)
    cloud_mask: np.array
        2D cloud mask with True where cloud pixels are
    im_nodata: np.array
        2D mask with True where noData pixels are
    georef: np.array
        vector of 6 elements [Xtr, Xscale, Xshear, Ytr, Yshear, Yscale]
    image_epsg: int
        spatial reference system of the image
    pixel_size: float
        size of the pixels in metres
    settings: dict
        see DEFAULT_SETTINGS

    Returns:
    -----------
    shoreline: np.array
        X and Y coordinates of the shoreline (empty if no threshold was found)
    t_otsu: float
        threshold used to map the shoreline (np.nan if not found)
    method: str
        thresholding method used

    """

    im_ref_buffer = create_shoreline_buffer(cloud_mask.shape, georef, image_epsg,
                                            pixel_size, settings)
    t_otsu, method = compute_threshold(im_index, cloud_mask, im_ref_buffer, pixel_size, settings)
    if np.isnan(t_otsu):
        logger.warning('Otsu threshold could not be found')
        return np.zeros((0,2)), t_otsu, method
    contours = find_wl_contours(im_index, cloud_mask, t_otsu, im_ref_buffer)
    shoreline = process_shoreline(contours, cloud_mask, im_nodata, georef, image_epsg, settings)

    return shoreline, t_otsu, method

###################################################################################################
# PLOTTING FUNCTIONS
###################################################################################################

def plot_detection(im_index, cloud_mask, shoreline, t_otsu, georef, image_epsg,
                   settings, date, satname):
    """
    Saves a figure showing the water index, the mapped shoreline and the
    histogram of the index with the Otsu threshold under jpg_files/detection.

    Arguments:
    -----------
    im_index: np.array
        2D water index image
    cloud_mask: np.array
        2D cloud mask with True where cloud pixels are
    shoreline: np.array
        X and Y coordinates of the shoreline (output_epsg)
    t_otsu: float
        threshold used to map the shoreline
    georef: np.array
        vector of 6 elements [Xtr, Xscale, Xshear, Ytr, Yshear, Yscale]
    image_epsg: int
        spatial reference system of the image
    settings: dict with the following keys
        'inputs': dict
            input parameters (sitename, filepath)
        'output_epsg': int
            output spatial reference system as EPSG code
    date: str
        date at which the image was taken
    satname: str
        name of the satellite mission

    Returns:
    -----------
    fn: str
        filepath + filename of the saved .jpg

    """

    sitename = settings['inputs']['sitename']
    filepath = os.path.join(settings['inputs']['filepath'], sitename, 'jpg_files', 'detection')
    if not os.path.exists(filepath):
        os.makedirs(filepath)

    if len(shoreline) > 0:
        sl_pix = SDS_tools.convert_world2pix(SDS_tools.convert_epsg(shoreline,
                                                                    settings['output_epsg'],
                                                                    image_epsg), georef)
    else:
        sl_pix = np.array([[np.nan, np.nan],[np.nan, np.nan]])

    fig = plt.figure(figsize=[14, 9], tight_layout=True)
    gs = gridspec.GridSpec(2, 1, height_ratios=[4,1])
    ax1 = fig.add_subplot(gs[0,0])
    ax2 = fig.add_subplot(gs[1,0])
    im_plot = np.copy(im_index)
    im_plot[cloud_mask] = np.nan
    ax1.imshow(im_plot, cmap='bwr', vmin=-1, vmax=1)
    ax1.plot(sl_pix[:,0], sl_pix[:,1], 'k.', markersize=3)
    ax1.axis('off')
    ax1.set_title('%s - %s - %s'%(sitename, date, satname), fontweight='bold', fontsize=14)
    # histogram of the water index with the threshold
    vec = im_plot[~np.isnan(im_plot)]
    ax2.set_facecolor('0.75')
    ax2.yaxis.grid(color='w', linestyle='--', linewidth=0.5)
    ax2.set(ylabel='PDF', yticklabels=[], xlim=[-1,1])
    if len(vec) > 0:
        ax2.hist(vec, bins=np.arange(-1, 1.01, 0.01), density=True, color='C0')
    ax2.axvline(x=t_otsu, ls='--', c='k', lw=1.5, label='threshold = %.3f'%t_otsu)
    ax2.legend(loc=1)

    fn = os.path.join(filepath, date + '_' + satname + '.jpg')
    fig.savefig(fn, dpi=150)
    plt.close(fig)

    return fn
