"""
This module contains utilities to work with satellite images, mapped shorelines
and settings dictionnaries

Author: Kilian Vos, Water Research Laboratory, University of New South Wales
"""

# load modules
import os
import copy
import json
import bisect
import logging
import numpy as np
import pandas as pd
from datetime import datetime

# other modules
import geopandas as gpd
from shapely import geometry
import skimage.transform as transform
from pyproj import Transformer

# shorechange modules
from shorechange.exceptions import InvalidSettings

logger = logging.getLogger(__name__)

###################################################################################################
# COORDINATES CONVERSION FUNCTIONS
###################################################################################################

def convert_pix2world(points, georef):
    """
    Converts pixel coordinates (row,columns) to world projected coordinates
    performing an affine transformation.

    KV WRL 2018

    Arguments:
    -----------
        points: np.array or list of np.array
            array with 2 columns (rows first and columns second)
        georef: np.array
            vector of 6 elements [Xtr, Xscale, Xshear, Ytr, Yshear, Yscale]

    Returns:
    -----------
        points_converted: np.array or list of np.array
            converted coordinates, first columns with X and second column with Y

    """

    # make affine transformation matrix
    aff_mat = np.array([[georef[1], georef[2], georef[0]],
                       [georef[4], georef[5], georef[3]],
                       [0, 0, 1]])
    # create affine transformation
    tform = transform.AffineTransform(aff_mat)

    if type(points) is list:
        points_converted = []
        # iterate over the list
        for arr in points:
            points_converted.append(tform(arr[:,[1,0]]))
    elif type(points) is np.ndarray:
        points_converted = tform(points[:,[1,0]])
    else:
        raise TypeError('invalid input type: %s'%type(points))

    return points_converted

def convert_world2pix(points, georef):
    """
    Converts world projected coordinates (X,Y) to image coordinates
    (column,row) performing an affine transformation.

    KV WRL 2018

    Arguments:
    -----------
        points: np.array or list of np.array
            array with 2 columns (X first and Y second)
        georef: np.array
            vector of 6 elements [Xtr, Xscale, Xshear, Ytr, Yshear, Yscale]

    Returns:
    -----------
        points_converted: np.array or list of np.array
            converted coordinates, first column with column and second column with row

    """

    # make affine transformation matrix
    aff_mat = np.array([[georef[1], georef[2], georef[0]],
                       [georef[4], georef[5], georef[3]],
                       [0, 0, 1]])
    # create affine transformation
    tform = transform.AffineTransform(aff_mat)

    if type(points) is list:
        points_converted = []
        for arr in points:
            points_converted.append(tform.inverse(arr))
    elif type(points) is np.ndarray:
        points_converted = tform.inverse(points)
    else:
        raise TypeError('invalid input type: %s'%type(points))

    return points_converted

def convert_epsg(points, epsg_in, epsg_out):
    """
    Converts from one spatial reference to another using the epsg codes.

    KV WRL 2018

    Arguments:
    -----------
        points: np.array or list of np.ndarray
            array with 2 columns (X or longitude first, Y or latitude second)
        epsg_in: int
            epsg code of the spatial reference in which the input is
        epsg_out: int
            epsg code of the spatial reference in which the output will be

    Returns:
    -----------
        points_converted: np.array or list of np.array
            converted coordinates (2 columns)

    """

    # always_xy so that lon/lat are handled in the same order as X/Y
    transformer = Transformer.from_crs(int(epsg_in), int(epsg_out), always_xy=True)

    def _transform(arr):
        arr = np.atleast_2d(np.asarray(arr, dtype=float))
        if len(arr) == 0:
            return np.zeros((0,2))
        x, y = transformer.transform(arr[:,0], arr[:,1])
        return np.transpose(np.array([x, y]))

    if type(points) is list:
        points_converted = [_transform(arr) for arr in points]
    elif type(points) is np.ndarray:
        points_converted = _transform(points)
    else:
        raise TypeError('invalid input type: %s'%type(points))

    return points_converted

###################################################################################################
# IMAGE ANALYSIS FUNCTIONS
###################################################################################################

def nd_index(im1, im2, cloud_mask):
    """
    Computes normalised difference index on 2 images (2D), given a cloud mask (2D).

    KV WRL 2018

    Arguments:
    -----------
        im1, im2: np.array
            Images (2D) with which to calculate the ND index
        cloud_mask: np.array
            2D cloud mask with True where cloud pixels are

    Returns:
    -----------
        im_nd: np.array
            Image (2D) containing the ND index
    """

    im1 = im1.astype(float)
    im2 = im2.astype(float)
    im_nd = np.ones(im1.shape) * np.nan
    with np.errstate(divide='ignore', invalid='ignore'):
        temp = np.divide(im1 - im2, im1 + im2)
    im_nd[~cloud_mask] = temp[~cloud_mask]

    return im_nd

###################################################################################################
# POLYGONS AND TRANSECTS
###################################################################################################

def smallest_rectangle(polygon):
    """
    Converts a polygon to the smallest rectangle polygon with sides parallel
    to coordinate axes.

    KV WRL 2020

    Arguments:
    -----------
    polygon: list of coordinates
        pair of coordinates for 5 vertices, in clockwise order,
        first and last points must match

    Returns:
    -----------
    polygon: list of coordinates
        smallest rectangle polygon

    """

    multipoints = geometry.Polygon(polygon[0])
    polygon_geom = multipoints.envelope
    coords_polygon = np.array(polygon_geom.exterior.coords)
    polygon_rect = [[[_[0], _[1]] for _ in coords_polygon]]

    return polygon_rect

def polygon_from_kml(fn):
    """
    Extracts coordinates from a .kml file.

    KV WRL 2018

    Arguments:
    -----------
    fn: str
        filepath + filename of the kml file to be read

    Returns:
    -----------
        polygon: list
            coordinates extracted from the .kml file

    """

    # read .kml file
    with open(fn) as kmlFile:
        doc = kmlFile.read()
    # parse to find coordinates field
    str1 = '<coordinates>'
    str2 = '</coordinates>'
    subdoc = doc[doc.find(str1)+len(str1):doc.find(str2)]
    # coordinates are separated by whitespace, each one being lon,lat[,alt]
    polygon = []
    for coords in subdoc.split():
        values = coords.split(',')
        polygon.append([float(values[0]), float(values[1])])

    return [polygon]

def polygon_from_geojson(fn):
    """
    Extracts coordinates from a .geojson file (first polygon found).

    Arguments:
    -----------
    fn: str
        filepath + filename of the geojson file to be read

    Returns:
    -----------
        polygon: list
            coordinates extracted from the .geojson file

    """

    gdf = gpd.read_file(fn)
    if gdf.crs is not None and gdf.crs.to_epsg() != 4326:
        gdf = gdf.to_crs(epsg=4326)
    coords = np.array(gdf.geometry.iloc[0].exterior.coords)
    polygon = [[[_[0], _[1]] for _ in coords]]

    return polygon

def transects_from_geojson(filename):
    """
    Reads transect coordinates from a .geojson file.

    Arguments:
    -----------
        filename: str
            contains the path and filename of the geojson file to be loaded

    Returns:
    -----------
        transects: dict
            contains the X and Y coordinates of each transect

    """

    gdf = gpd.read_file(filename)
    transects = dict([])
    for i in gdf.index:
        transects[str(gdf.loc[i,'name'])] = np.array(gdf.loc[i,'geometry'].coords)

    logger.info('%d transects have been loaded from %s', len(transects), filename)
    print('%d transects have been loaded' % len(transects.keys()))

    return transects

def transects_to_gdf(transects, epsg=None):
    """
    Saves the shore-normal transects as a gpd.GeoDataFrame

    KV WRL 2018

    Arguments:
    -----------
    transects: dict
        contains the coordinates of the transects
    epsg: int
        spatial reference system of the coordinates (optional)

    Returns:
    -----------
        gdf_all: gpd.GeoDataFrame

    """

    names = list(transects.keys())
    geoms = [geometry.LineString(transects[key]) for key in names]
    crs = 'EPSG:%d'%epsg if epsg is not None else None
    gdf_all = gpd.GeoDataFrame({'name': names}, geometry=geoms, crs=crs)

    return gdf_all

###################################################################################################
# OUTPUT DICTIONNARY
###################################################################################################

def merge_output(output):
    """
    Function to merge the output dictionnary, which has one key per satellite mission into a
    dictionnary containing all the shorelines and dates ordered chronologically.

    Arguments:
    -----------
        output: dict
            contains the extracted shorelines and corresponding dates, organised by satellite mission

    Returns:
    -----------
        output_all: dict
            contains the extracted shorelines in a single list sorted by date

    """

    satnames = list(output.keys())
    if len(satnames) == 0:
        return dict([])
    # initialize output dict
    output_all = dict([])
    for key in output[satnames[0]].keys():
        output_all[key] = []
    # create extra key for the satellite name
    output_all['satname'] = []
    # fill the output dict
    for satname in satnames:
        for key in output[satnames[0]].keys():
            output_all[key] = output_all[key] + list(output[satname][key])
        output_all['satname'] = output_all['satname'] + [satname]*len(output[satname]['dates'])
    # sort chronologically
    idx_sorted = sorted(range(len(output_all['dates'])), key=output_all['dates'].__getitem__)
    for key in output_all.keys():
        output_all[key] = [output_all[key][i] for i in idx_sorted]

    return output_all

def _select_output(output, idx_keep):
    "keep only the elements of the output dict at the indices idx_keep"
    output_sel = dict([])
    for key in output.keys():
        output_sel[key] = [output[key][i] for i in idx_keep]
    return output_sel

def remove_duplicates(output):
    """
    Function to remove from the output dictionnary shorelines mapped on the
    same day by the same satellite mission (overlapping tiles). The longest
    shoreline is kept.

    KV WRL 2020

    Arguments:
    -----------
        output: dict
            contains output dict with shoreline and metadata

    Returns:
    -----------
        output_no_duplicates: dict
            contains the updated dict where duplicates have been removed

    """

    groups = dict([])
    for i in range(len(output['dates'])):
        key = (output['satname'][i], output['dates'][i].strftime('%Y-%m-%d'))
        groups.setdefault(key, []).append(i)
    idx_keep = []
    for key in groups.keys():
        idx = groups[key]
        lengths = [len(output['shorelines'][k]) for k in idx]
        idx_keep.append(idx[int(np.argmax(lengths))])
    idx_keep = sorted(idx_keep)
    n_removed = len(output['dates']) - len(idx_keep)
    if n_removed > 0:
        logger.info('%d duplicates removed', n_removed)
        print('%d duplicates' % n_removed)

    return _select_output(output, idx_keep)

def remove_inaccurate_georef(output, accuracy):
    """
    Filters out images with a georeferencing accuracy (RMSE in metres) above
    a given threshold. For Sentinel-2 images the quality flag is used instead
    (images flagged as FAILED are removed).

    KV WRL 2020

    Arguments:
    -----------
        output: dict
            contains the extracted shorelines and corresponding dates.
        accuracy: int
            minimum horizontal georeferencing accuracy (metres) for a shoreline to be accepted

    Returns:
    -----------
        output_filtered: dict
            contains the updated dictionnary

    """

    idx_keep = []
    for i, acc in enumerate(output['geoaccuracy']):
        if isinstance(acc, str):
            if acc.upper() != 'FAILED':
                idx_keep.append(i)
        elif acc <= accuracy:
            idx_keep.append(i)
    n_removed = len(output['geoaccuracy']) - len(idx_keep)
    logger.info('%d bad georef removed', n_removed)
    print('%d bad georef' % n_removed)

    return _select_output(output, idx_keep)

def output_to_gdf(output, geomtype='lines', epsg=None):
    """
    Saves the mapped shorelines as a gpd.GeoDataFrame

    KV WRL 2018

    Arguments:
    -----------
    output: dict
        contains the coordinates of the mapped shorelines + attributes
    geomtype: str
        'lines' for LineString and 'points' for Multipoint geometry
    epsg: int
        spatial reference system of the shorelines (optional)

    Returns:
    -----------
        gdf_all: gpd.GeoDataFrame
            contains the geometries + attributes, None if no shorelines

    """

    records = []
    geoms = []
    for i in range(len(output['shorelines'])):
        # skip if there shoreline is empty
        if len(output['shorelines'][i]) == 0:
            continue
        if geomtype == 'lines':
            # a LineString needs at least 2 points
            if len(output['shorelines'][i]) < 2:
                continue
            geom = geometry.LineString(output['shorelines'][i])
        elif geomtype == 'points':
            coords = output['shorelines'][i]
            geom = geometry.MultiPoint([(coords[_,0], coords[_,1]) for _ in range(coords.shape[0])])
        else:
            raise ValueError('geomtype %s is not recognised, use "lines" or "points"'%geomtype)
        geoms.append(geom)
        records.append({'date': output['dates'][i].strftime('%Y-%m-%d %H:%M:%S'),
                        'satname': output['satname'][i],
                        'geoaccuracy': output['geoaccuracy'][i],
                        'cloud_cover': output['cloud_cover'][i],
                        'threshold': output['MNDWI_threshold'][i]})
    if len(geoms) == 0:
        return None
    crs = 'EPSG:%d'%epsg if epsg is not None else None
    gdf_all = gpd.GeoDataFrame(pd.DataFrame(records), geometry=geoms, crs=crs)

    return gdf_all

###################################################################################################
# TIME-SERIES UTILITIES
###################################################################################################

def get_closest_datapoint(dates, dates_ts, values):
    """
    Extremely efficient script to get closest data point to a set of dates from a very
    long time-series (e.g., 15-minutes tide data, or hourly wave data)

    Make sure that dates and dates_ts are in the same timezone (also aware or naive)

    KV WRL 2020

    Arguments:
    -----------
    dates: list of datetimes
        dates at which the closest point from the time-series should be extracted
    dates_ts: list of datetimes
        dates of the long time-series (sorted)
    values: np.array
        array with the values of the long time-series (tides, waves, etc...)

    Returns:
    -----------
    values_vec: np.array
        values corresponding to the input dates

    """

    # check if the time-series cover the dates
    if min(dates) < dates_ts[0] or max(dates) > dates_ts[-1]:
        raise ValueError('Time-series do not cover the range of your input dates')

    values = np.asarray(values)
    values_vec = np.zeros(len(dates))
    for i, date in enumerate(dates):
        k = bisect.bisect_left(dates_ts, date)
        if k == 0:
            values_vec[i] = values[0]
        elif k == len(dates_ts):
            values_vec[i] = values[-1]
        else:
            # pick whichever neighbour is closest in time
            before = date - dates_ts[k-1]
            after = dates_ts[k] - date
            values_vec[i] = values[k] if after < before else values[k-1]

    return values_vec

###################################################################################################
# SETTINGS AND LOGGING
###################################################################################################

def get_settings(defaults, settings=None):
    """
    Merges a user settings dictionnary with the default values.

    Arguments:
    -----------
    defaults: dict
        default settings of a module (also defines which keys are allowed)
    settings: dict
        user settings, only the keys to overwrite need to be provided

    Returns:
    -----------
    settings_all: dict
        complete settings dictionnary

    """

    if settings is None:
        settings = dict([])
    unknown = [key for key in settings.keys() if key not in defaults.keys()]
    if len(unknown) > 0:
        raise InvalidSettings('Unknown settings', unknown)
    settings_all = copy.deepcopy(defaults)
    settings_all.update(settings)

    return settings_all

def read_settings(fn):
    """
    Reads a settings dictionnary from a .json file.

    Arguments:
    -----------
    fn: str
        filepath + filename of the .json file

    Returns:
    -----------
    settings: dict

    """

    with open(fn, 'r') as f:
        settings = json.load(f)
    if not isinstance(settings, dict):
        raise InvalidSettings('The settings file %s does not contain a dictionnary'%fn)
    logger.info('Settings loaded from %s', fn)

    return settings

def setup_logging(filepath, level=logging.INFO):
    """
    Configures the root logger to write to a timestamped file in a logs/
    subfolder of filepath.

    The log filename uses the pattern log_<MM-DD-YY>-<HH>_<MM>_<SS>.txt

    Arguments:
    -----------
    filepath: str
        directory in which the logs/ folder is created
    level: int
        logging level

    Returns:
    -----------
    log_file: str
        filepath + filename of the log file

    """

    log_dir = os.path.abspath(os.path.join(filepath, 'logs'))
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)
    log_filename = 'log_' + datetime.now().strftime('%m-%d-%y-%I_%M_%S') + '.txt'
    log_file = os.path.join(log_dir, log_filename)
    log_format = '%(asctime)s - %(filename)s at line %(lineno)s in %(funcName)s() - %(levelname)s : %(message)s'
    file_handler = logging.FileHandler(log_file, mode='a')
    file_handler.setFormatter(logging.Formatter(log_format))
    root = logging.getLogger()
    root.addHandler(file_handler)
    root.setLevel(level)

    return log_file
