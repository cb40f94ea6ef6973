"""
This module contains functions to read and compile the outputs of the
Digital Shoreline Analysis System (DSAS): rates tables and transect/shoreline
intersect tables, with the field names standardised across DSAS versions

Author: Kilian Vos, Water Research Laboratory, University of New South Wales
"""

# load modules
import os
import logging
import numpy as np
import pandas as pd
import geopandas as gpd

# shorechange modules
from shorechange import SDS_rates
from shorechange.exceptions import MissingColumnsError

logger = logging.getLogger(__name__)

# alternative names (lower case) of the DSAS fields
DSAS_FIELDS = {
    'TransectID': ['transectid','transorder','transect_id','transect','trans_id'],
    'BaselineID': ['baselineid','baseline_id'],
    'ShrCount': ['shrcount','shr_count','nshorelines'],
    'TCD': ['tcd'],
    'SCE': ['sce'],
    'NSM': ['nsm'],
    'NSMunc': ['nsmunc','nsm_unc'],
    'EPR': ['epr'],
    'EPRunc': ['eprunc','epr_unc'],
    'LRR': ['lrr'],
    'LR2': ['lr2'],
    'LSE': ['lse'],
    'LCI': ['lci','lci90','lci95','lci99'],
    'WLR': ['wlr'],
    'WR2': ['wr2'],
    'WSE': ['wse'],
    'WCI': ['wci','wci90','wci95','wci99'],
    'ShorelineDate': ['shorelinedate','shoreline_date','date_','date','dates'],
    'Distance': ['distance','dist','intersect_distance'],
    'Uncertainty': ['uncertainty','uncy','unc','shoreline_unc'],
    }

INTERSECT_COLUMNS = ['TransectID','ShorelineDate','Distance']

def standardise_columns(df):
    """
    Renames the columns of a DSAS table to the standard field names of
    DSAS_FIELDS (the comparison is not case sensitive). When several columns
    match the same field, the first one is used and the others are left as they are.
    """
    aliases = dict([])
    for field in DSAS_FIELDS.keys():
        for alias in DSAS_FIELDS[field]:
            aliases[alias] = field
    rename = dict([])
    for col in df.columns:
        field = aliases.get(str(col).lower())
        if field is None or col == field:
            continue
        if field in df.columns or field in rename.values():
            logger.warning('Column %s not renamed, %s already exists', col, field)
            continue
        rename[col] = field
    return df.rename(columns=rename)

def check_columns(df, required, source=''):
    "raises MissingColumnsError if df does not have all the required columns"
    missing = [_ for _ in required if _ not in df.columns]
    if len(missing) > 0:
        raise MissingColumnsError(missing, source)

def read_dsas_table(fn, keep_geometry=False):
    """
    Reads a DSAS output, either a vector file (shapefile, geopackage, geojson)
    or a table (.csv), and standardises its field names.

    Arguments:
    -----------
    fn: str
        filepath + filename of the DSAS output
    keep_geometry: bool
        if True and fn is a vector file, returns a gpd.GeoDataFrame,
        otherwise only the attributes are returned

    Returns:
    -----------
    df: pd.DataFrame or gpd.GeoDataFrame

    """
    if not os.path.exists(fn):
        raise FileNotFoundError('DSAS output %s not found'%fn)
    if os.path.splitext(fn)[1].lower() == '.csv':
        df = pd.read_csv(fn)
    else:
        df = gpd.read_file(fn)
        if not keep_geometry:
            df = pd.DataFrame(df.drop(columns=df.geometry.name))
    df = standardise_columns(df)
    logger.info('%d records read from %s', len(df), fn)
    return df

def compile_rates(files, sitename):
    """
    Compiles the DSAS rates tables of several periods in a single table.

    Arguments:
    -----------
    files: dict
        label of the period -> filepath of the DSAS rates table
    sitename: str
        name of the site

    Returns:
    -----------
    df_all: pd.DataFrame
        rates of every transect and period, with the columns 'site' and 'period'

    """

    df_list = []
    for period in files.keys():
        df = read_dsas_table(files[period])
        check_columns(df, ['TransectID'], files[period])
        df.insert(0, 'period', period)
        df.insert(0, 'site', sitename)
        df_list.append(df)
    if len(df_list) == 0:
        raise ValueError('No DSAS tables to compile')
    df_all = pd.concat(df_list, ignore_index=True)
    print('%d transects compiled over %d periods' % (len(df_all), len(df_list)))

    return df_all

def intersects_to_time_series(df):
    """
    Converts a DSAS intersect table (one row per transect and shoreline) to a
    time-series with one row per shoreline date and one column per transect.

    Arguments:
    -----------
    df: pd.DataFrame
        intersect table with the columns 'TransectID', 'ShorelineDate',
        'Distance' and optionally 'Uncertainty'

    Returns:
    -----------
    df_ts: pd.DataFrame
        'dates' and one column of distances per transect
    df_unc: pd.DataFrame
        uncertainty of each position (same shape as df_ts without 'dates'),
        None if the table has no 'Uncertainty' column

    """

    df = standardise_columns(df)
    check_columns(df, INTERSECT_COLUMNS, 'intersect table')
    df = df.copy()
    df['ShorelineDate'] = pd.to_datetime(df['ShorelineDate'], utc=True)
    df['TransectID'] = df['TransectID'].astype(str)

    df_ts = df.pivot_table(index='ShorelineDate', columns='TransectID', values='Distance',
                           aggfunc='mean')
    # keep the order of the transects
    transects = list(pd.unique(df['TransectID']))
    df_ts = df_ts.reindex(columns=transects).reset_index().rename(columns={'ShorelineDate':'dates'})
    df_ts.columns.name = None

    df_unc = None
    if 'Uncertainty' in df.columns:
        df_unc = df.pivot_table(index='ShorelineDate', columns='TransectID', values='Uncertainty',
                                aggfunc='mean')
        df_unc = df_unc.reindex(index=pd.DatetimeIndex(df_ts['dates']), columns=transects)
        df_unc = df_unc.reset_index(drop=True)
        df_unc.columns.name = None

    return df_ts, df_unc

def recompute_rates(df_intersects, settings=None):
    "recomputes the rates from a DSAS intersect table (to cross-check the DSAS rates)"
    df_ts, df_unc = intersects_to_time_series(df_intersects)
    if df_unc is not None and np.any(df_unc.isna().values & df_ts.drop(columns='dates').notna().values):
        logger.warning('Some intersections have no uncertainty, the WLR is not computed along those transects')
    return SDS_rates.compute_rates(df_ts, settings, df_unc)

def compare_rates(df_dsas, df_rates, fields=('NSM','EPR','LRR')):
    """
    Differences between the rates reported by DSAS and the rates recomputed
    with SDS_rates, for each transect found in both tables.

    Returns a pd.DataFrame with 'TransectID' and '<field>_dsas', '<field>' and
    '<field>_diff' for each field.
    """
    df_dsas = standardise_columns(df_dsas)
    fields = [_ for _ in fields if _ in df_dsas.columns and _ in df_rates.columns]
    check_columns(df_dsas, ['TransectID'], 'DSAS rates')
    left = df_dsas[['TransectID'] + fields].copy()
    left['TransectID'] = left['TransectID'].astype(str)
    right = df_rates[['TransectID'] + fields].copy()
    right['TransectID'] = right['TransectID'].astype(str)
    df = left.merge(right, on='TransectID', suffixes=('_dsas',''))
    for field in fields:
        df[field + '_diff'] = df[field] - df[field + '_dsas']
    return df

def save_compilation(df, fn):
    "save a compiled table in a .csv file"
    if not os.path.exists(os.path.dirname(os.path.abspath(fn))):
        os.makedirs(os.path.dirname(os.path.abspath(fn)))
    df.to_csv(fn, sep=',', index=False)
    logger.info('Compilation saved in %s', fn)
    print('Compilation saved as:\n%s'%fn)
