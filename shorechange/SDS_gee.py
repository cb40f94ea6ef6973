"""
This module contains all the functions needed to map shorelines on the
Google Earth Engine server: image collections, cloud masking, water indices,
composites, Otsu thresholds computed on server-side histograms and exports.

Author: Kilian Vos, Water Research Laboratory, University of New South Wales
"""

# load basic modules
import os
import re
import time
import pickle
import logging
import numpy as np
import pandas as pd

# earth engine module
import ee

# additional modules
from datetime import datetime
import pytz

# shorechange modules
from shorechange import SDS_tools, SDS_shoreline
from shorechange.exceptions import InvalidDateRange, RegionTooLarge

np.seterr(all='ignore') # raise/ignore divisions by 0 and nans

logger = logging.getLogger(__name__)

# Tier 1 TOA collections (Collection 2 for Landsat)
COLLECTIONS = {'L5':'LANDSAT/LT05/C02/T1_TOA',
               'L7':'LANDSAT/LE07/C02/T1_TOA',
               'L8':'LANDSAT/LC08/C02/T1_TOA',
               'L9':'LANDSAT/LC09/C02/T1_TOA',
               'S2':'COPERNICUS/S2_HARMONIZED'}
# blue, green, red, nir, swir1 for each mission
BANDS = {'L5':['B1','B2','B3','B4','B5'],
         'L7':['B1','B2','B3','B4','B5'],
         'L8':['B2','B3','B4','B5','B6'],
         'L9':['B2','B3','B4','B5','B6'],
         'S2':['B2','B3','B4','B8','B11']}
BAND_NAMES = ['blue','green','red','nir','swir1']
QA_BANDS = {'L5':'QA_PIXEL','L7':'QA_PIXEL','L8':'QA_PIXEL','L9':'QA_PIXEL','S2':'QA60'}
# bits of the QA band flagging clouds (Landsat: dilated cloud, cloud, cloud shadow;
# Sentinel-2: opaque clouds, cirrus)
# TODO: QA60 is empty for S2 images processed after 2022-01-25, use the s2cloudless probability for those
CLOUD_BITS = {'L5':[1,3,4],'L7':[1,3,4],'L8':[1,3,4],'L9':[1,3,4],'S2':[10,11]}
PIXEL_SIZE = {'L5':30,'L7':30,'L8':30,'L9':30,'S2':10}
CLOUD_PROPERTY = {'L5':'CLOUD_COVER','L7':'CLOUD_COVER','L8':'CLOUD_COVER',
                  'L9':'CLOUD_COVER','S2':'CLOUDY_PIXEL_PERCENTAGE'}
# fields carried by each image record, exported shoreline and metadata csv
METADATA_FIELDS = ['date','satname','tile','epsg','cloud_cover','acc_georef',
                   'image_quality','sun_elevation','id']
# value used for masked pixels when sampling arrays from the server
NODATA = -9999
# maximum number of pixels returned by sampleRectangle
MAX_PIXELS = 262144

DEFAULT_SETTINGS = dict(SDS_shoreline.DEFAULT_SETTINGS, **{
    'index': 'mndwi',               # water index ('mndwi' or 'ndwi')
    'cloud_thresh': 0.5,            # max fraction of cloudy pixels in the region of interest
    'prc_cloud_cover': 95,          # max scene cloud cover (%) to keep an image
    'composite': 'none',            # 'none', 'annual' or 'all' (median composites)
    'scale': None,                  # pixel size of the exports (defaults to the mission's)
    'canny_threshold': 0.7,         # threshold of the Earth Engine Canny edge detector
    'export_folder': 'shorechange', # Google Drive folder for the exports
    'export_raster': True,          # export the water mask as a GeoTIFF
    'export_vectors': True,         # export the water polygons as GeoJSON
    })

###################################################################################################
# IMAGE COLLECTIONS
###################################################################################################

def initialise_ee(project=None):
    """
    Initialises the connection with the Earth Engine server, authenticating
    first if no credentials are found.
    """
    try:
        ee.Initialize(project=project)
    except ee.EEException:
        logger.info('Earth Engine credentials not found, authenticating')
        ee.Authenticate()
        ee.Initialize(project=project)

def check_dates(dates):
    """
    Parses the start and end dates ('yyyy-mm-dd') and checks that they are in
    chronological order, raises InvalidDateRange otherwise.

    Returns the two dates as UTC datetimes.
    """
    dates_dt = [pytz.utc.localize(datetime.strptime(_,'%Y-%m-%d')) for _ in dates]
    if len(dates_dt) != 2 or dates_dt[1] <= dates_dt[0]:
        raise InvalidDateRange(dates)
    return dates_dt

def check_images_available(inputs, prc_cloud_cover=95):
    """
    Scan the GEE collections to see how many images are available for each
    satellite mission (L5,L7,L8,L9,S2).

    KV WRL 2018

    Arguments:
    -----------
    inputs: dict with the following keys
        'polygon': list
            polygon containing the lon/lat coordinates of the region of interest
        'dates': list of str
            start and end dates in format 'yyyy-mm-dd'
        'sat_list': list of str
            names of the satellite missions to include (e.g. ['L8','S2'])
    prc_cloud_cover: int
        maximum cloud cover (%) of the scenes

    Returns:
    -----------
    im_dict: dict
        list of image infos for each satellite mission
    """

    check_dates(inputs['dates'])

    print('Number of images available between %s and %s:'%(inputs['dates'][0],inputs['dates'][1]))
    im_dict = dict([])
    sum_img = 0
    for satname in inputs['sat_list']:
        if satname not in COLLECTIONS.keys():
            raise ValueError('satellite mission %s is not supported, use one of %s'%(satname, list(COLLECTIONS.keys())))
        im_list = get_image_info(COLLECTIONS[satname], satname, inputs['polygon'],
                                 inputs['dates'], prc_cloud_cover)
        sum_img = sum_img + len(im_list)
        print('     %s: %d images'%(satname,len(im_list)))
        im_dict[satname] = im_list
    print('  Total: %d images'%sum_img)
    logger.info('%d images available for %s', sum_img, inputs['sat_list'])

    return im_dict

def get_image_info(collection, satname, polygon, dates, prc_cloud_cover=95, max_tries=3):
    """
    Reads info about EE images for the specified collection, satellite and dates

    KV WRL 2022

    Arguments:
    -----------
    collection: str
        name of the collection (e.g. 'LANDSAT/LC08/C02/T1_TOA')
    satname: str
        name of the satellite mission
    polygon: list
        coordinates of the polygon in lat/lon
    dates: list of str
        start and end dates (e.g. '2022-01-01')
    prc_cloud_cover: int
        maximum cloud cover (%) of the scenes
    max_tries: int
        number of requests before giving up

    Returns:
    -----------
    im_list: list of dict
        list with the info for the images
    """
    for attempt in range(max_tries):
        try:
            col = ee.ImageCollection(collection).filterBounds(ee.Geometry.Polygon(polygon))\
                                                .filterDate(dates[0],dates[1])
            im_list = col.getInfo().get('features')
            break
        except ee.EEException as e:
            logger.warning('Request to %s failed (attempt %d): %s', collection, attempt+1, e)
            if attempt == max_tries - 1:
                raise
            time.sleep(10)
    # remove very cloudy images (>95% cloud cover)
    im_list = remove_cloudy_images(im_list, satname, prc_cloud_cover)
    return im_list

def remove_cloudy_images(im_list, satname, prc_cloud_cover=95):
    """
    Removes from the EE collection very cloudy images (>95% cloud cover)

    KV WRL 2018

    Arguments:
    -----------
    im_list: list
        list of images in the collection
    satname:
        name of the satellite mission
    prc_cloud_cover: int
        percentage of cloud cover acceptable on the images

    Returns:
    -----------
    im_list_upt: list
        updated list of images
    """

    cloud_property = CLOUD_PROPERTY[satname]
    im_list_upt = [_ for _ in im_list if _['properties'].get(cloud_property, 0) <= prc_cloud_cover]
    if len(im_list_upt) < len(im_list):
        logger.info('%s: %d images above %d%% cloud cover removed', satname,
                    len(im_list) - len(im_list_upt), prc_cloud_cover)

    return im_list_upt

def _first_property(properties, names, default):
    "value of the first property found in names, default if none of them exist"
    for key in names:
        if key in properties.keys():
            return properties[key]
    logger.warning('None of the properties %s were found, using %s', names, default)
    return default

def image_metadata(im_meta, satname):
    """
    Parses the metadata of an image returned by the Earth Engine server into a
    flat record with the METADATA_FIELDS.

    Landsat images without a georeferencing RMSE get the average of the
    Landsat archive (12 m). Sentinel-2 images only provide a quality flag
    (PASSED or FAILED), set to 'PASSED' when missing.

    Arguments:
    -----------
    im_meta: dict
        image info as returned by ee.ImageCollection.getInfo()
    satname: str
        name of the satellite mission

    Returns:
    -----------
    record: dict
        date (UTC datetime), satname, tile, epsg, cloud_cover, acc_georef,
        image_quality, sun_elevation and id of the image

    """

    props = im_meta['properties']
    # time of acquisition (UNIX time in ms)
    date = datetime.fromtimestamp(props['system:time_start']/1000, tz=pytz.utc)
    # epsg code of the first band (e.g. 'EPSG:32756')
    epsg = int(im_meta['bands'][0]['crs'][5:])

    if satname in ['L5','L7','L8','L9']:
        # average georefencing error across Landsat collection (RMSE = 12m)
        acc_georef = props.get('GEOMETRIC_RMSE_MODEL', 12)
        if satname in ['L5','L7']:
            image_quality = props.get('IMAGE_QUALITY', np.nan)
        else:
            image_quality = props.get('IMAGE_QUALITY_OLI', np.nan)
        tile = '%03d%03d'%(props['WRS_PATH'],props['WRS_ROW'])
        sun_elevation = props.get('SUN_ELEVATION', np.nan)
    elif satname == 'S2':
        # the flag name changes across the archive
        acc_georef = _first_property(props, ['GEOMETRIC_QUALITY_FLAG', 'GEOMETRIC_QUALITY',
                                             'quality_check', 'GENERAL_QUALITY_FLAG'], 'PASSED')
        image_quality = _first_property(props, ['RADIOMETRIC_QUALITY',
                                                'RADIOMETRIC_QUALITY_FLAG'], 'PASSED')
        tile = props['MGRS_TILE']
        sun_elevation = 90 - props.get('MEAN_SOLAR_ZENITH_ANGLE', np.nan)
    else:
        raise ValueError('satellite mission %s is not supported'%satname)

    record = {'date': date,
              'satname': satname,
              'tile': tile,
              'epsg': epsg,
              'cloud_cover': props.get(CLOUD_PROPERTY[satname], np.nan),
              'acc_georef': acc_georef,
              'image_quality': image_quality,
              'sun_elevation': sun_elevation,
              'id': im_meta['id']}

    return record

###################################################################################################
# IMAGE PREPARATION (SERVER-SIDE)
###################################################################################################

def rename_bands(image, satname, keep_qa=False):
    "select the blue, green, red, nir and swir1 bands (and optionally the QA band as 'qa')"
    bands = list(BANDS[satname])
    names = list(BAND_NAMES)
    if keep_qa:
        bands.append(QA_BANDS[satname])
        names.append('qa')
    return image.select(bands, names)

def get_cloud_band(image, satname):
    """
    Returns a single band image 'cloud' equal to 1 where any of the cloud bits
    of the QA band is set.
    """
    qa = image.select(QA_BANDS[satname])
    bits = CLOUD_BITS[satname]
    cloud = qa.bitwiseAnd(1 << bits[0]).neq(0)
    for bit in bits[1:]:
        cloud = cloud.Or(qa.bitwiseAnd(1 << bit).neq(0))
    return cloud.rename('cloud')

def mask_clouds(image, satname):
    "mask the cloudy pixels of an image (QA band bits)"
    return image.updateMask(get_cloud_band(image, satname).Not())

def compute_index(image, index='mndwi'):
    """
    Computes a normalised difference water index on an image with renamed bands,
    'mndwi' (green, swir1) or 'ndwi' (green, nir). The output band is named
    after the index.
    """
    if index == 'mndwi':
        bands = ['green','swir1']
    elif index == 'ndwi':
        bands = ['green','nir']
    else:
        raise ValueError('index can only be: mndwi or ndwi, got %s'%index)
    return image.normalizedDifference(bands).rename(index)

def composite_periods(dates, composite='annual'):
    """
    Splits the date range in the periods over which composites are computed:
    calendar years ('annual') clipped to the date range, or the whole range
    ('all').

    Arguments:
    -----------
    dates: list of str
        start and end dates in format 'yyyy-mm-dd'
    composite: str
        'annual' or 'all'

    Returns:
    -----------
    periods: list of tuples
        (label, start, end) with UTC datetimes, end excluded

    """
    start, end = check_dates(dates)
    if composite == 'all':
        return [('%s_%s'%(dates[0], dates[1]), start, end)]
    elif composite == 'annual':
        periods = []
        for year in range(start.year, end.year + 1):
            p0 = max(start, pytz.utc.localize(datetime(year,1,1)))
            p1 = min(end, pytz.utc.localize(datetime(year+1,1,1)))
            if p1 > p0:
                periods.append(('%d'%year, p0, p1))
        return periods
    else:
        raise ValueError('composite can only be: none, annual or all, got %s'%composite)

def make_composites(inputs, settings):
    """
    Computes cloud-masked median composites of the water index across all the
    satellite missions in inputs['sat_list'], one per calendar year or one
    over the whole date range (settings['composite']).

    Arguments:
    -----------
    inputs: dict
        'polygon', 'dates' and 'sat_list'
    settings: dict with the following keys
        'composite': str
            'annual' or 'all'
        'index': str
            'mndwi' or 'ndwi'
        'prc_cloud_cover': int
            maximum cloud cover (%) of the scenes used in the composites

    Returns:
    -----------
    composites: list of dict
        'image' (ee.Image with the index band), 'label', 'date' (middle of the
        period), 'satname' and 'n_images'

    """

    region = ee.Geometry.Polygon(inputs['polygon'])
    composites = []
    for label, start, end in composite_periods(inputs['dates'], settings['composite']):
        col_all = None
        for satname in inputs['sat_list']:
            col = ee.ImageCollection(COLLECTIONS[satname]).filterBounds(region)\
                    .filterDate(start.strftime('%Y-%m-%d'), end.strftime('%Y-%m-%d'))\
                    .filter(ee.Filter.lte(CLOUD_PROPERTY[satname], settings['prc_cloud_cover']))\
                    .map(lambda image, satname=satname: rename_bands(mask_clouds(image, satname), satname))
            col_all = col if col_all is None else col_all.merge(col)
        n_images = col_all.size().getInfo()
        if n_images == 0:
            logger.info('No images for composite %s', label)
            continue
        image = compute_index(col_all.median(), settings['index'])
        composites.append({'image': image,
                           'label': label,
                           'date': start + (end - start)/2,
                           'satname': '+'.join(inputs['sat_list']),
                           'n_images': n_images})
        print('\rcomposite %s: %d images'%(label, n_images), end='')
    print('')

    return composites

###################################################################################################
# SERVER-SIDE HISTOGRAMS AND THRESHOLD
###################################################################################################

def get_histogram(image, region, scale, n_buckets=256):
    """
    Histogram of a single band image over a region, computed on the server with
    ee.Reducer.histogram.

    Returns the counts and the mean value of each bucket (empty arrays if the
    region does not contain any valid pixel).
    """
    stats = image.reduceRegion(reducer=ee.Reducer.histogram(maxBuckets=n_buckets),
                               geometry=region, scale=scale, maxPixels=1e9,
                               bestEffort=True).getInfo()
    hist = list(stats.values())[0] if stats else None
    if hist is None:
        return np.array([]), np.array([])
    return np.array(hist['histogram'], dtype=float), np.array(hist['bucketMeans'], dtype=float)

def get_edge_histogram(image, region, scale, settings):
    """
    Histogram of the water index restricted to a buffer around the edges detected
    by the Canny algorithm. Falls back to the histogram of the whole region when
    less than settings['min_edge_pixels'] pixels are found around the edges.

    Arguments:
    -----------
    image: ee.Image
        single band water index image
    region: ee.Geometry
        region of interest
    scale: float
        pixel size in metres
    settings: dict with the following keys
        'canny_threshold', 'canny_sigma': float
            parameters of the Canny edge detector
        'edge_buffer': float
            buffer around the edges in metres
        'min_edge_pixels': int
            minimum number of pixels in the buffer
        'n_buckets': int
            number of buckets of the histogram

    Returns:
    -----------
    counts, means: np.array
        histogram of the index
    method: str
        'edge_otsu' or 'otsu' if the whole region was used

    """
    canny = ee.Algorithms.CannyEdgeDetector(image=image, threshold=settings['canny_threshold'],
                                            sigma=settings['canny_sigma'])
    edge_buffer = canny.gt(0).focal_max(settings['edge_buffer'], 'square', 'meters')
    counts, means = get_histogram(image.updateMask(edge_buffer), region, scale, settings['n_buckets'])
    if np.sum(counts) < settings['min_edge_pixels']:
        logger.info('Only %d pixels around the edges, using the whole region', np.sum(counts))
        counts, means = get_histogram(image, region, scale, settings['n_buckets'])
        return counts, means, 'otsu'
    return counts, means, 'edge_otsu'

def get_threshold_ee(image, region, scale, settings):
    """
    Otsu threshold of a water index image computed from its server-side histogram.

    Returns the threshold (np.nan if not found) and the method used.
    """
    if settings['threshold_method'] == 'edge_otsu':
        counts, means, method = get_edge_histogram(image, region, scale, settings)
    elif settings['threshold_method'] == 'otsu':
        counts, means = get_histogram(image, region, scale, settings['n_buckets'])
        method = 'otsu'
    else:
        raise ValueError('threshold_method can only be: otsu or edge_otsu, got %s'%settings['threshold_method'])
    return SDS_shoreline.otsu_threshold(counts, means), method

###################################################################################################
# SAMPLING IMAGES TO NUMPY
###################################################################################################

def utm_epsg(polygon):
    "epsg code of the UTM zone containing the centroid of the polygon"
    coords = np.array(polygon[0])
    lon, lat = np.mean(coords[:-1,0]), np.mean(coords[:-1,1])
    zone = int(np.floor((lon + 180)/6) % 60) + 1
    return 32600 + zone if lat >= 0 else 32700 + zone

def pixel_aligned_bounds(polygon, epsg, pixel_size):
    """
    Bounds of the polygon in the projected coordinate system, rounded outwards
    to the closest multiples of the pixel size, and the corresponding georef
    of the pixel centres.

    Arguments:
    -----------
    polygon: list
        polygon containing the lon/lat coordinates
    epsg: int
        epsg code of the projected coordinate system
    pixel_size: float
        pixel size in metres

    Returns:
    -----------
    rect: list
        [xmin, ymin, xmax, ymax]
    georef: np.array
        vector of 6 elements [Xtr, Xscale, Xshear, Ytr, Yshear, Yscale]

    """
    coords = SDS_tools.convert_epsg(np.array(polygon[0]), 4326, epsg)
    xmin = np.floor(np.min(coords[:,0])/pixel_size)*pixel_size
    ymin = np.floor(np.min(coords[:,1])/pixel_size)*pixel_size
    xmax = np.ceil(np.max(coords[:,0])/pixel_size)*pixel_size
    ymax = np.ceil(np.max(coords[:,1])/pixel_size)*pixel_size
    rect = [xmin, ymin, xmax, ymax]
    # pixel (0,0) is the top-left pixel, its centre is half a pixel inside the bounds
    georef = np.array([xmin + pixel_size/2, pixel_size, 0, ymax - pixel_size/2, 0, -pixel_size])
    return rect, georef

def check_region_size(polygon, epsg, pixel_size):
    """
    Number of pixels of the region of interest on the sampling grid, raises
    RegionTooLarge if it cannot be sampled in a single request (MAX_PIXELS).
    """
    rect, _ = pixel_aligned_bounds(polygon, epsg, pixel_size)
    n_pixels = int(round((rect[2] - rect[0])/pixel_size)*round((rect[3] - rect[1])/pixel_size))
    if n_pixels > MAX_PIXELS:
        raise RegionTooLarge(n_pixels, MAX_PIXELS, pixel_size)
    return n_pixels

def adjust_polygon(polygon, epsg, pixel_size):
    """
    Adjust polygon of ROI to fit exactly with the pixels of a grid of the
    given pixel size in the projected coordinate system.

    KV WRL 2022

    Returns the ee.Geometry of the region and its georef.
    """
    rect, georef = pixel_aligned_bounds(polygon, epsg, pixel_size)
    ee_region = ee.Geometry.Rectangle([float(_) for _ in rect], 'EPSG:%d'%epsg, False, False)
    return ee_region, georef

def get_image_arrays(image, region, bands):
    """
    Samples the bands of an image over a rectangular region and returns them as
    numpy arrays (NaN where the pixels are masked). The image should be
    reprojected to the grid of the region beforehand.

    Arguments:
    -----------
    image: ee.Image
    region: ee.Geometry
        rectangle aligned on the pixels
    bands: list of str
        names of the bands to sample

    Returns:
    -----------
    arrays: dict
        2D np.array for each band

    """
    sample = image.select(bands).sampleRectangle(region=region, defaultValue=NODATA)
    props = sample.getInfo()['properties']
    arrays = dict([])
    for band in bands:
        arr = np.array(props[band], dtype=float)
        arr[arr == NODATA] = np.nan
        arrays[band] = arr
    return arrays

def decode_cloud_mask(im_qa, satname):
    """
    Creates a cloud mask from the QA band sampled as a numpy array.

    KV WRL 2018

    Arguments:
    -----------
    im_qa: np.array
        Image containing the QA band (NaN for nodata)
    satname: string
        short name for the satellite: ```'L5', 'L7', 'L8', 'L9' or 'S2'```

    Returns:
    -----------
    cloud_mask : np.array
        boolean array with True if a pixel is cloudy and False otherwise

    """
    im_qa = np.nan_to_num(im_qa, nan=0).astype(np.int64)
    cloud_mask = np.zeros(im_qa.shape, dtype=bool)
    for bit in CLOUD_BITS[satname]:
        cloud_mask = np.logical_or(cloud_mask, np.bitwise_and(im_qa, 1 << bit) > 0)
    return cloud_mask

def calculate_cloud_cover(cloud_mask, im_nodata):
    "fraction of the valid pixels that are cloudy (1 if there are no valid pixels)"
    n_valid = np.sum(~im_nodata)
    if n_valid == 0:
        return 1.
    return np.sum(np.logical_and(cloud_mask, ~im_nodata))/n_valid

###################################################################################################
# MAIN FUNCTIONS
###################################################################################################

def _empty_output():
    return {'dates':[], 'shorelines':[], 'filename':[], 'cloud_cover':[], 'geoaccuracy':[],
            'idx':[], 'MNDWI_threshold':[], 'threshold_method':[]}

def _map_image(im_index, cloud_mask, im_nodata, georef, epsg, pixel_size, settings, date, satname):
    "map the shoreline on sampled arrays and save the detection figure if requested"
    shoreline, t_otsu, method = SDS_shoreline.extract_shoreline(im_index, cloud_mask, im_nodata,
                                                                georef, epsg, pixel_size, settings)
    if settings['save_figure'] and not np.isnan(t_otsu):
        SDS_shoreline.plot_detection(im_index, cloud_mask, shoreline, t_otsu, georef, epsg,
                                     settings, date.strftime('%Y-%m-%d-%H-%M-%S'), satname)
    return shoreline, t_otsu, method

def extract_shorelines(inputs, settings=None):
    """
    Main function to extract shorelines from satellite images. The water index
    of each image (or composite) is sampled from the Earth Engine server and
    the shoreline is mapped locally with SDS_shoreline.extract_shoreline.

    KV WRL 2018

    Arguments:
    -----------
    inputs: dict with the following keys
        'sitename': str
            name of the site
        'filepath': str
            directory where the outputs are saved
        'polygon': list
            polygon containing the lon/lat coordinates of the region of interest
        'dates': list of str
            start and end dates in format 'yyyy-mm-dd'
        'sat_list': list of str
            satellite missions to use
    settings: dict
        see DEFAULT_SETTINGS, only the keys to overwrite need to be provided

    Returns:
    -----------
    output: dict
        contains the extracted shorelines and corresponding dates + metadata

    """

    settings = SDS_tools.get_settings(DEFAULT_SETTINGS, settings)
    settings['inputs'] = inputs
    sitename = inputs['sitename']
    filepath = os.path.join(inputs['filepath'], sitename)
    if not os.path.exists(filepath):
        os.makedirs(filepath)

    # the finest grid is the largest one sampled
    check_region_size(inputs['polygon'], utm_epsg(inputs['polygon']),
                      min([PIXEL_SIZE[_] for _ in inputs['sat_list']]))

    initialise_ee(inputs.get('project'))

    output = dict([])
    metadata = []
    if settings['composite'] == 'none':
        im_dict = check_images_available(inputs, settings['prc_cloud_cover'])
        for satname in im_dict.keys():
            print('Mapping shorelines:')
            output[satname] = _empty_output()
            pixel_size = PIXEL_SIZE[satname]
            for i, im_meta in enumerate(im_dict[satname]):
                print('\r%s:   %d%%' % (satname, int(((i+1)/len(im_dict[satname]))*100)), end='')
                meta = image_metadata(im_meta, satname)
                try:
                    epsg = meta['epsg']
                    region, georef = adjust_polygon(inputs['polygon'], epsg, pixel_size)
                    image = rename_bands(ee.Image(meta['id']), satname, keep_qa=True)
                    image = image.addBands(compute_index(image, settings['index']))
                    image = image.reproject(crs='EPSG:%d'%epsg, scale=pixel_size)
                    arrays = get_image_arrays(image, region, [settings['index'], 'qa'])
                except ee.EEException as e:
                    logger.exception('Could not sample image %s: %s', meta['id'], e)
                    continue
                im_index = arrays[settings['index']]
                im_nodata = np.logical_or(np.isnan(im_index), np.isnan(arrays['qa']))
                cloud_mask = decode_cloud_mask(arrays['qa'], satname)
                # skip image if cloud cover is above user-defined threshold
                cloud_cover = calculate_cloud_cover(cloud_mask, im_nodata)
                if cloud_cover > settings['cloud_thresh']:
                    logger.info('%s skipped, cloud cover %.2f', meta['id'], cloud_cover)
                    continue
                # nodata pixels are treated like clouds
                cloud_mask = np.logical_or(cloud_mask, im_nodata)
                meta['cloud_cover'] = cloud_cover
                metadata.append(meta)
                shoreline, t_otsu, method = _map_image(im_index, cloud_mask, im_nodata, georef, epsg,
                                                       pixel_size, settings, meta['date'], satname)
                if np.isnan(t_otsu):
                    continue
                output[satname]['dates'].append(meta['date'])
                output[satname]['shorelines'].append(shoreline)
                output[satname]['filename'].append(meta['id'])
                output[satname]['cloud_cover'].append(cloud_cover)
                output[satname]['geoaccuracy'].append(meta['acc_georef'])
                output[satname]['idx'].append(i)
                output[satname]['MNDWI_threshold'].append(t_otsu)
                output[satname]['threshold_method'].append(method)
            print('')
    else:
        composites = make_composites(inputs, settings)
        satname = 'composite'
        output[satname] = _empty_output()
        epsg = utm_epsg(inputs['polygon'])
        pixel_size = min([PIXEL_SIZE[_] for _ in inputs['sat_list']])
        region, georef = adjust_polygon(inputs['polygon'], epsg, pixel_size)
        for i, comp in enumerate(composites):
            try:
                image = comp['image'].reproject(crs='EPSG:%d'%epsg, scale=pixel_size)
                arrays = get_image_arrays(image, region, [settings['index']])
            except ee.EEException as e:
                logger.exception('Could not sample composite %s: %s', comp['label'], e)
                continue
            im_index = arrays[settings['index']]
            # pixels that are cloudy on every image of the period are masked in the median
            im_nodata = np.isnan(im_index)
            cloud_cover = calculate_cloud_cover(im_nodata, np.zeros(im_nodata.shape, dtype=bool))
            if cloud_cover > settings['cloud_thresh']:
                logger.info('composite %s skipped, cloud cover %.2f', comp['label'], cloud_cover)
                continue
            shoreline, t_otsu, method = _map_image(im_index, im_nodata, im_nodata, georef, epsg,
                                                   pixel_size, settings, comp['date'], satname)
            if np.isnan(t_otsu):
                continue
            output[satname]['dates'].append(comp['date'])
            output[satname]['shorelines'].append(shoreline)
            output[satname]['filename'].append('composite_%s'%comp['label'])
            output[satname]['cloud_cover'].append(cloud_cover)
            output[satname]['geoaccuracy'].append('composite')
            output[satname]['idx'].append(i)
            output[satname]['MNDWI_threshold'].append(t_otsu)
            output[satname]['threshold_method'].append(method)

    # merge the missions, sort chronologically and remove duplicates
    output = SDS_tools.merge_output(output)
    if len(output) > 0 and len(output['dates']) > 0:
        output = SDS_tools.remove_duplicates(output)

    # save output structure as output.pkl
    with open(os.path.join(filepath, sitename + '_output.pkl'), 'wb') as f:
        pickle.dump(output, f)
    # save the mapped shorelines as a GeoJSON
    if len(output) > 0:
        gdf = SDS_tools.output_to_gdf(output, 'lines', settings['output_epsg'])
        if gdf is not None:
            gdf.to_file(os.path.join(filepath, sitename + '_output_lines.geojson'),
                        driver='GeoJSON', encoding='utf-8')
    if len(metadata) > 0:
        save_metadata_csv(metadata, os.path.join(filepath, sitename + '_metadata.csv'))
    n_mapped = len(output['dates']) if len(output) > 0 else 0
    logger.info('%d shorelines mapped at %s', n_mapped, sitename)
    print('%d shorelines mapped' % n_mapped)

    return output

def export_name(sitename, date, satname):
    "description of an export task (letters, digits, '-' and '_', max 100 characters)"
    name = '%s_%s_%s'%(sitename, date.strftime('%Y-%m-%d-%H-%M-%S'), satname)
    return re.sub(r'[^A-Za-z0-9_-]', '_', name)[:100]

def _export_properties(record, t_otsu, method):
    "metadata fields of an image + threshold, as properties that can be set on ee objects"
    props = dict([])
    for key in METADATA_FIELDS:
        value = record.get(key)
        if isinstance(value, datetime):
            value = value.strftime('%Y-%m-%d %H:%M:%S')
        elif isinstance(value, (float, np.floating)) and np.isnan(value):
            value = -9999
        elif isinstance(value, np.generic):
            value = value.item()
        props[key] = value
    props['threshold'] = float(t_otsu)
    props['threshold_method'] = method
    return props

def _start_exports(index_image, region, scale, t_otsu, record, settings):
    "start the raster and vector exports of the water mask of one image, returns the task ids"
    sitename = settings['inputs']['sitename']
    name = export_name(sitename, record['date'], record['satname'])
    props = _export_properties(record, t_otsu, record['threshold_method'])
    water = index_image.gt(t_otsu).rename('water').toByte().set(props)
    task_ids = {'raster_task': None, 'vector_task': None}
    if settings['export_raster']:
        task = ee.batch.Export.image.toDrive(image=water.clip(region), description=name,
                                             folder=settings['export_folder'],
                                             fileNamePrefix=name, region=region,
                                             scale=scale, maxPixels=1e13)
        task.start()
        task_ids['raster_task'] = task.id
    if settings['export_vectors']:
        vectors = water.selfMask().reduceToVectors(geometry=region, scale=scale,
                                                   geometryType='polygon', eightConnected=False,
                                                   labelProperty='water',
                                                   reducer=ee.Reducer.countEvery(),
                                                   maxPixels=1e13)
        vectors = vectors.map(lambda feature: feature.set(props))
        task = ee.batch.Export.table.toDrive(collection=vectors, description=name + '_vectors',
                                             folder=settings['export_folder'],
                                             fileNamePrefix=name + '_vectors',
                                             fileFormat='GeoJSON')
        task.start()
        task_ids['vector_task'] = task.id
    return task_ids

def export_shorelines(inputs, settings=None):
    """
    Maps the water/land interface on the Earth Engine server and exports the
    water masks (GeoTIFF) and the water polygons (GeoJSON) to Google Drive.
    The Otsu threshold is computed from the server-side histogram of each image
    (or composite) and stored with the metadata fields as properties of the
    exported rasters and vectors.

    Arguments:
    -----------
    inputs: dict
        'sitename', 'filepath', 'polygon', 'dates' and 'sat_list'
    settings: dict
        see DEFAULT_SETTINGS, only the keys to overwrite need to be provided

    Returns:
    -----------
    df_exports: pd.DataFrame
        one row per image with the metadata fields, the threshold and the ids
        of the export tasks (also saved as <sitename>_exports.csv)

    """

    settings = SDS_tools.get_settings(DEFAULT_SETTINGS, settings)
    settings['inputs'] = inputs
    sitename = inputs['sitename']
    filepath = os.path.join(inputs['filepath'], sitename)
    if not os.path.exists(filepath):
        os.makedirs(filepath)

    initialise_ee(inputs.get('project'))
    region = ee.Geometry.Polygon(inputs['polygon'])

    # list of (index image, metadata record, scale)
    images = []
    if settings['composite'] == 'none':
        im_dict = check_images_available(inputs, settings['prc_cloud_cover'])
        for satname in im_dict.keys():
            for im_meta in im_dict[satname]:
                record = image_metadata(im_meta, satname)
                image = rename_bands(mask_clouds(ee.Image(record['id']), satname), satname)
                scale = settings['scale'] if settings['scale'] is not None else PIXEL_SIZE[satname]
                images.append((compute_index(image, settings['index']), record, scale))
    else:
        scale = settings['scale']
        if scale is None:
            scale = min([PIXEL_SIZE[_] for _ in inputs['sat_list']])
        for comp in make_composites(inputs, settings):
            record = {'date': comp['date'], 'satname': 'composite', 'tile': comp['label'],
                      'epsg': utm_epsg(inputs['polygon']), 'cloud_cover': np.nan,
                      'acc_georef': 'composite', 'image_quality': comp['n_images'],
                      'sun_elevation': np.nan, 'id': 'composite_%s'%comp['label']}
            images.append((comp['image'], record, scale))

    records = []
    print('Exporting water masks:')
    for i, (index_image, record, scale) in enumerate(images):
        print('\r%d/%d'%(i+1, len(images)), end='')
        try:
            t_otsu, method = get_threshold_ee(index_image, region, scale, settings)
            record['threshold'] = t_otsu
            record['threshold_method'] = method
            if np.isnan(t_otsu):
                logger.warning('Otsu threshold not found for %s, image skipped', record['id'])
                records.append(dict(record, raster_task=None, vector_task=None))
                continue
            task_ids = _start_exports(index_image, region, scale, t_otsu, record, settings)
        except ee.EEException as e:
            logger.exception('Export failed for %s: %s', record['id'], e)
            continue
        records.append(dict(record, **task_ids))
    print('')

    df_exports = pd.DataFrame(records, columns=METADATA_FIELDS + ['threshold','threshold_method',
                                                                  'raster_task','vector_task'])
    if len(df_exports) > 0:
        df_exports['date'] = [_.strftime('%Y-%m-%d %H:%M:%S') for _ in df_exports['date']]
    df_exports.to_csv(os.path.join(filepath, sitename + '_exports.csv'), index=False)
    logger.info('%d exports started for %s', df_exports['raster_task'].notna().sum(), sitename)

    return df_exports

###################################################################################################
# CSV OUTPUTS
###################################################################################################

def get_tide_dates(output):
    """
    Acquisition dates (UTC) of the mapped shorelines, to query a tide model.

    Returns a pd.DataFrame with the columns 'dates' (ISO format) and 'satname'.
    """
    dates = [_.astimezone(pytz.utc).strftime('%Y-%m-%dT%H:%M:%SZ') for _ in output['dates']]
    return pd.DataFrame({'dates': dates, 'satname': output['satname']})

def save_tide_dates(output, fn):
    "save the acquisition dates of the mapped shorelines in a .csv file"
    df = get_tide_dates(output)
    df.to_csv(fn, index=False)
    logger.info('%d dates saved in %s', len(df), fn)
    return df

def save_metadata_csv(metadata, fn):
    """
    Saves the metadata records of the images (see image_metadata) in a .csv
    file with the METADATA_FIELDS as columns.
    """
    df = pd.DataFrame(metadata, columns=METADATA_FIELDS)
    df['date'] = [_.strftime('%Y-%m-%d %H:%M:%S') for _ in df['date']]
    df.to_csv(fn, index=False)
    return df
