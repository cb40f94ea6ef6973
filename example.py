#==========================================================#
# Shoreline mapping on Google Earth Engine and shoreline change analysis
#==========================================================#

# Kilian Vos WRL 2018

#%% 1. Initial settings

# load modules
import os
import pickle
import warnings
warnings.filterwarnings("ignore")
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from matplotlib import gridspec
plt.ion()
from shorechange import SDS_gee, SDS_tools, SDS_transects, SDS_errors, SDS_rates, SDS_dsas, SDS_matrix

# region of interest (longitude, latitude in WGS84)
polygon = [[[151.301454, -33.700754],
            [151.311453, -33.702075],
            [151.307237, -33.739761],
            [151.294220, -33.736329],
            [151.301454, -33.700754]]]
# can also be loaded from a .kml or .geojson polygon
# polygon = SDS_tools.polygon_from_geojson(os.path.join(os.getcwd(), 'data', 'NARRA_polygon.geojson'))
# convert polygon to a smallest rectangle (sides parallel to coordinate axes)
polygon = SDS_tools.smallest_rectangle(polygon)

# date range
dates = ['1984-01-01', '2022-01-01']
# satellite missions
sat_list = ['L5','L7','L8','L9','S2']
# name of the site
sitename = 'NARRA'
# filepath where data will be stored
filepath_data = os.path.join(os.getcwd(), 'data')

# put all the inputs into a dictionnary
inputs = {
    'polygon': polygon,
    'dates': dates,
    'sat_list': sat_list,
    'sitename': sitename,
    'filepath': filepath_data,
    }

# write the logs of this run in data/NARRA/logs
SDS_tools.setup_logging(os.path.join(filepath_data, sitename))

# before mapping the shorelines, check how many images are available for your inputs
SDS_gee.initialise_ee()
SDS_gee.check_images_available(inputs);

#%% 2. Shoreline mapping on Google Earth Engine

# settings for the shoreline extraction (see SDS_gee.DEFAULT_SETTINGS for the full list)
settings = {
    'index': 'mndwi',               # water index, 'mndwi' or 'ndwi'
    'threshold_method': 'edge_otsu',# 'otsu' or 'edge_otsu' (histogram around the water/land edges)
    'cloud_thresh': 0.1,            # threshold on maximum cloud cover
    'dist_clouds': 300,             # distance around clouds where shoreline can't be mapped
    'output_epsg': 28356,           # epsg code of spatial reference system desired for the output
    'min_length_sl': 500,           # minimum length (in metres) of shoreline perimeter to be valid
    'composite': 'none',            # 'none' (every image), 'annual' or 'all' (median composites)
    'save_figure': True,            # if True, saves a figure showing the mapped shoreline for each image
    }
# [OPTIONAL] a reference shoreline (in output_epsg) to remove the false detections
# settings['reference_shoreline'] = np.array(gpd.read_file('NARRA_reference_shoreline.geojson').geometry[0].coords)
# settings['max_dist_ref'] = 100

# extract shorelines from all images (also saves output.pkl, the shorelines .geojson and the metadata .csv)
output = SDS_gee.extract_shorelines(inputs, settings)

# [OPTIONAL] run the detection entirely on the server and export the rasters/vectors to Google Drive
# df_tasks = SDS_gee.export_shorelines(inputs, settings)

# remove inaccurate georeferencing (set threshold to 10 m)
output = SDS_tools.remove_inaccurate_georef(output, 10)

# save the dates of the shorelines, to compute the tide levels with a tide model
SDS_gee.save_tide_dates(output, os.path.join(filepath_data, sitename, '%s_tide_dates.csv'%sitename))

# plot the mapped shorelines
fig = plt.figure(figsize=[15,8], tight_layout=True)
plt.axis('equal')
plt.xlabel('Eastings')
plt.ylabel('Northings')
plt.grid(linestyle=':', color='0.5')
for i in range(len(output['shorelines'])):
    sl = output['shorelines'][i]
    date = output['dates'][i]
    plt.plot(sl[:,0], sl[:,1], '.', label=date.strftime('%d-%m-%Y'))
fig.savefig(os.path.join(filepath_data, sitename, 'mapped_shorelines.jpg'), dpi=200)

#%% 3. Shoreline intersections with the transects

# if you have already mapped the shorelines, load the output.pkl file
filepath = os.path.join(filepath_data, sitename)
with open(os.path.join(filepath, sitename + '_output' + '.pkl'), 'rb') as f:
    output = pickle.load(f)

# load the transects from a .geojson file (origin landwards, in output_epsg)
transects = SDS_tools.transects_from_geojson(os.path.join(filepath_data, 'NARRA_transects.geojson'))
# or create them from an origin, an orientation (degrees clockwise from North) and a length
# transects = {'NA1': SDS_transects.create_transect([342500, 6266300], 110, 300)}

settings_transects = { # parameters for computing intersections
                      'along_dist':          25,        # along-shore distance to use for computing the intersection
                      'min_points':          3,         # minimum number of shoreline points to calculate an intersection
                      'max_std':             15,        # max std for points around transect
                      'max_range':           30,        # max range for points around transect
                      'min_chainage':        -100,      # largest negative value along transect (landwards of transect origin)
                      'multiple_inter':      'auto',    # mode for removing outliers ('auto', 'nan', 'max')
                      'prc_multiple':         0.1,      # percentage to use in 'auto' mode to switch from 'nan' to 'max'
                     }
settings_transects = SDS_tools.get_settings(SDS_transects.DEFAULT_SETTINGS, settings_transects)
cross_distance = SDS_transects.compute_intersection_QC(output, transects, settings_transects)

# plot the time-series of cross-shore shoreline change
fig = plt.figure(figsize=[15,8], tight_layout=True)
gs = gridspec.GridSpec(len(cross_distance),1)
gs.update(left=0.05, right=0.95, bottom=0.05, top=0.95, hspace=0.05)
for i,key in enumerate(cross_distance.keys()):
    if np.all(np.isnan(cross_distance[key])):
        continue
    ax = fig.add_subplot(gs[i,0])
    ax.grid(linestyle=':', color='0.5')
    ax.set_ylim([-50,50])
    ax.plot(output['dates'], cross_distance[key]- np.nanmedian(cross_distance[key]), '-o', ms=4, mfc='w')
    ax.set_ylabel('distance [m]', fontsize=12)
    ax.text(0.5,0.95, key, bbox=dict(boxstyle="square", ec='k',fc='w'), ha='center',
            va='top', transform=ax.transAxes, fontsize=14)
fig.savefig(os.path.join(filepath, 'time_series_raw.jpg'), dpi=200)

# save time-series in a .csv file
df_raw = SDS_transects.cross_distance_to_df(output['dates'], cross_distance, output['satname'])
SDS_transects.save_time_series(df_raw, os.path.join(filepath, 'transect_time_series.csv'))

#%% 4. Tidal correction

# measured (or modelled) water levels in UTC, relative to Mean Sea Level
tide_data = pd.read_csv(os.path.join(filepath_data, 'NARRA_tides.csv'), parse_dates=['dates'])
dates_ts = [_.to_pydatetime() for _ in pd.to_datetime(tide_data['dates'], utc=True)]
tides_ts = np.array(tide_data['tide'])
# tide level at the time of each shoreline
tides_sat = SDS_tools.get_closest_datapoint(output['dates'], dates_ts, tides_ts)

# correct the shorelines to a reference elevation (0 m MSL) with a beach slope of 0.1
cross_distance_tc = SDS_transects.tidal_correction(cross_distance, tides_sat, 0., 0.1)
df_tc = SDS_transects.cross_distance_to_df(output['dates'], cross_distance_tc, output['satname'])
SDS_transects.save_time_series(df_tc, os.path.join(filepath, 'transect_time_series_tidally_corrected.csv'))

#%% 5. Comparison with in-situ surveys

# surveyed cross-shore distances along the same transects ('dates' + one column per transect)
fn_surveys = os.path.join(filepath_data, 'NARRA_surveys.csv')
if os.path.exists(fn_surveys):
    df_ref = SDS_transects.time_series_from_csv(fn_surveys)
    rmse = SDS_errors.compute_rmse(df_tc, df_ref)
    print(rmse['all'])
    print(rmse['satellites'])
    errors = rmse['pairs']['satellite'].values - rmse['pairs']['survey'].values
    SDS_errors.plot_errors(errors, rmse['pairs']['satname'].values,
                           os.path.join(filepath, '%s_errors.jpg'%sitename))

#%% 6. Shoreline change rates

# positional uncertainty of each shoreline (pixel size, georeferencing, tidal correction)
uncertainty = SDS_errors.shoreline_uncertainty(output, {'tide_error': 0.1*10})
df_rates = SDS_rates.compute_rates(df_tc, {'min_shorelines': 10}, uncertainty)
df_rates.to_csv(os.path.join(filepath, '%s_rates.csv'%sitename), index=False)

# rates over several periods
periods = {'1987-2000': ['1987-01-01', '2000-01-01'],
           '2000-2022': ['2000-01-01', '2022-01-01']}
df_periods = SDS_rates.compute_rates_by_period(df_tc, periods, {'min_shorelines': 10}, uncertainty)
df_periods.insert(0, 'site', sitename)

#%% 7. DSAS outputs

# rates computed by DSAS over the same periods (shapefiles or .csv tables)
dsas_files = {'1987-2000': os.path.join(filepath_data, 'dsas', 'NARRA_rates_1987_2000.shp'),
              '2000-2022': os.path.join(filepath_data, 'dsas', 'NARRA_rates_2000_2022.shp')}
if all([os.path.exists(_) for _ in dsas_files.values()]):
    df_dsas = SDS_dsas.compile_rates(dsas_files, sitename)
    SDS_dsas.save_compilation(df_dsas, os.path.join(filepath, '%s_dsas_rates.csv'%sitename))
    # cross-check the DSAS rates with the intersections exported by DSAS
    df_intersects = SDS_dsas.read_dsas_table(os.path.join(filepath_data, 'dsas', 'NARRA_intersects.shp'))
    df_recomputed = SDS_dsas.recompute_rates(df_intersects)
    df_compare = SDS_dsas.compare_rates(df_dsas[df_dsas['period'] == '2000-2022'], df_recomputed)
    print(df_compare.describe())
else:
    df_dsas = df_periods

#%% 8. Summary matrices

matrices = SDS_matrix.assemble_matrices(df_dsas, {'stable_threshold': 0.2, 'high_erosion': -1.0})
SDS_matrix.save_matrices(matrices, os.path.join(filepath, 'matrices'), sitename)
print(matrices['EPR_summary'])
