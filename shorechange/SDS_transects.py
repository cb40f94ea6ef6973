"""
This module contains functions to compute the cross-shore position of the
mapped shorelines along shore-normal transects, correct them for the tide
and store the time-series

Author: Kilian Vos, Water Research Laboratory, University of New South Wales
"""

# load modules
import logging
import numpy as np
import pandas as pd
import skimage.transform as transform

np.seterr(all='ignore') # raise/ignore divisions by 0 and nans

logger = logging.getLogger(__name__)

# parameters of the intersection between shorelines and transects
DEFAULT_SETTINGS = {
    'along_dist': 25,           # alongshore distance (m) to the transect of the points used
    'min_points': 3,            # minimum number of shoreline points to compute an intersection
    'max_std': 15,              # max std (m) of the points around an intersection
    'max_range': 30,            # max range (m) of the points around an intersection
    'min_chainage': -100,       # furthest landward distance (m) of the origin accepted
    'max_dist_origin': 1000,    # max distance (m) to the origin of the points used
    'multiple_inter': 'auto',   # 'auto', 'nan' or 'max', what to do with multiple intersections
    'prc_multiple': 0.1,        # fraction of multiple intersections above which 'auto' uses 'max'
    }

def create_transect(origin, orientation, length):
    """
    Create a transect given an origin, orientation and length.
    Points are spaced at 1m intervals.

    KV WRL 2018

    Arguments:
    -----------
    origin: np.array
        contains the X and Y coordinates of the origin of the transect
    orientation: int
        angle of the transect (anti-clockwise from North) in degrees
    length: int
        length of the transect in metres

    Returns:
    -----------
    transect: np.array
        contains the X and Y coordinates of the transect

    """

    # angle from the X axis
    phi = (90 - orientation)*np.pi/180
    # points at 1 m intervals along the X axis
    coords = np.zeros((int(length)+1,2))
    coords[:,0] = np.linspace(0,length,int(length)+1)
    # rotate then translate to the origin
    tf = transform.EuclideanTransform(rotation=phi, translation=(origin[0],origin[1]))
    transect = tf(coords)

    return transect

def _chainages(sl, transect, settings):
    "cross-shore distances along the transect of the shoreline points close to it"
    p1 = np.array(transect[0,:])
    p2 = np.array(transect[-1,:])
    u = (p2 - p1)/np.linalg.norm(p2 - p1)
    diff = sl - p1
    # distance to the transect line and to its origin
    d_line = np.abs(u[0]*diff[:,1] - u[1]*diff[:,0])
    d_origin = np.linalg.norm(diff, axis=1)
    idx_close = np.logical_and(d_line <= settings['along_dist'],
                               d_origin <= settings['max_dist_origin'])
    # projection of the close points on the transect
    chainage = np.dot(diff[idx_close], u)
    return chainage[chainage >= settings['min_chainage']]

def compute_intersection_QC(output, transects, settings):
    """
    Computes the intersection between the 2D mapped shorelines and the
    transects, as the median chainage of the shoreline points within
    settings['along_dist'] of each transect. The intersections are quality
    controlled with the dispersion of these points.

    Arguments:
    -----------
        output: dict
            contains the extracted shorelines and corresponding dates.
        transects: dict
            contains the X and Y coordinates of the transects (first and last point needed for each
            transect).
        settings: dict
                'along_dist': int (in metres)
                    alongshore distance to caluclate the intersection (median of points
                    within this distance).
                'min_points': int
                    minimum number of shoreline points to calculate an intersections
                'max_std': int (in metres)
                    maximum std for the shoreline points when calculating the median,
                    if above this value then NaN is returned for the intersection
                'max_range': int (in metres)
                    maximum range  for the shoreline points when calculating the median,
                    if above this value then NaN is returned for the intersection
                'min_chainage': int (in metres)
                    furthest landward of the transect origin that an intersection is
                    accepted, beyond this point a NaN is returned
                'max_dist_origin': int (in metres)
                    maximum distance of the shoreline points to the origin
                'multiple_inter': mode for removing outliers ('auto', 'nan', 'max')
                'prc_multiple': percentage to use in 'auto' mode to switch from 'nan' to 'max'

    Returns:
    -----------
        cross_dist: dict
            time-series of cross-shore distance along each of the transects. These are not tidally
            corrected.

    """

    if settings['multiple_inter'] not in ['auto','nan','max']:
        raise ValueError('the multiple_inter parameter can only be: nan, max or auto')

    shorelines = output['shorelines']
    cross_dist = dict([])
    for key in transects.keys():
        stats = np.nan*np.ones((len(shorelines),5))
        for i, sl in enumerate(shorelines):
            if len(sl) == 0:
                continue
            chainage = _chainages(np.asarray(sl)[:,:2], np.asarray(transects[key]), settings)
            if len(chainage) == 0:
                continue
            stats[i,:] = [np.median(chainage), np.std(chainage), np.max(chainage),
                          np.min(chainage), len(chainage)]
        med_intersect, std_intersect, max_intersect, min_intersect, n_intersect = stats.T

        # quality control using the dispersion of the points (std and range)
        enough_points = n_intersect >= settings['min_points']
        idx_good = np.logical_and.reduce([std_intersect <= settings['max_std'],
                                          (max_intersect - min_intersect) <= settings['max_range'],
                                          enough_points])

        # intersections with high dispersion get the maximum chainage or a NaN
        use_max = settings['multiple_inter'] == 'max'
        if settings['multiple_inter'] == 'auto':
            prc_over = np.sum(std_intersect > settings['max_std'])/len(std_intersect)
            use_max = prc_over > settings['prc_multiple']
        if use_max:
            med_intersect[~idx_good] = max_intersect[~idx_good]
            med_intersect[~enough_points] = np.nan
        else:
            med_intersect[~idx_good] = np.nan

        cross_dist[key] = med_intersect

    logger.info('Intersections computed along %d transects', len(cross_dist))

    return cross_dist

def tidal_correction(cross_distance, tides, reference_elevation, beach_slope):
    """
    Tidally-corrects the cross-shore distances by projecting them to the
    reference elevation with a linear beach slope:
        corrected = distance + (tide - reference_elevation) / beach_slope

    Arguments:
    -----------
    cross_distance: dict
        time-series of cross-shore distance along each transect
    tides: np.array
        water level at the time of each shoreline
    reference_elevation: float
        elevation of the contour to project the shorelines to
    beach_slope: float or dict
        beach slope (tan(beta)), one value or one per transect

    Returns:
    -----------
    cross_distance_corrected: dict
        tidally-corrected time-series along each transect

    """

    tides = np.asarray(tides, dtype=float)
    cross_distance_corrected = dict([])
    for key in cross_distance.keys():
        slope = beach_slope[key] if isinstance(beach_slope, dict) else beach_slope
        if not slope > 0:
            raise ValueError('beach slope must be positive, got %s for transect %s'%(slope, key))
        chainage = np.asarray(cross_distance[key], dtype=float)
        if len(chainage) != len(tides):
            raise ValueError('%d tide levels for %d shorelines along transect %s'%(len(tides), len(chainage), key))
        correction = (tides - reference_elevation)/slope
        cross_distance_corrected[key] = chainage + correction

    return cross_distance_corrected

def cross_distance_to_df(dates, cross_distance, satnames=None):
    "time-series along the transects as a pd.DataFrame with a 'dates' column and one column per transect"
    out_dict = dict([])
    out_dict['dates'] = list(dates)
    if satnames is not None:
        out_dict['satname'] = list(satnames)
    for key in cross_distance.keys():
        out_dict[key] = cross_distance[key]
    return pd.DataFrame(out_dict)

def save_time_series(df, fn):
    "save the time-series in a .csv file"
    df.to_csv(fn, sep=',', index=False)
    logger.info('Time-series saved in %s', fn)
    print('Time-series of the shoreline change along the transects saved as:\n%s'%fn)

def time_series_from_csv(fn):
    """
    Reads a time-series of cross-shore distance saved with save_time_series.

    The dates are parsed as UTC datetimes and the column names prefixed with
    'Transect ' are renamed to the transect name.

    Returns a pd.DataFrame with a 'dates' column and one column per transect.
    """
    df = pd.read_csv(fn)
    df = df.drop(columns=[_ for _ in df.columns if str(_).startswith('Unnamed')])
    if 'dates' not in df.columns:
        raise ValueError('%s does not contain a dates column'%fn)
    df['dates'] = pd.to_datetime(df['dates'], utc=True)
    df = df.rename(columns={_: _[len('Transect '):] for _ in df.columns if str(_).startswith('Transect ')})
    return df.sort_values('dates').reset_index(drop=True)

def transect_columns(df):
    "names of the transect columns of a time-series pd.DataFrame"
    return [_ for _ in df.columns if _ not in ['dates','satname']]
