"""
This module contains functions to assemble the shoreline change rates of
several sites and periods into summary matrices

Author: Kilian Vos, Water Research Laboratory, University of New South Wales
"""

# load modules
import os
import logging
import numpy as np
import pandas as pd

# shorechange modules
from shorechange import SDS_tools

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    'rates': ['NSM','EPR','LRR'],           # rates to assemble in matrices
    'uncertainty': {'NSM':'NSMunc','EPR':'EPRunc','LRR':'LCI'}, # uncertainty of each rate
    'stable_threshold': 0.0,                # rates below this value (absolute) are stable
    'high_erosion': None,                   # rates below this (negative) value are high erosion
    'index': 'TransectID',                  # rows of the rate matrices
    'columns': 'period',                    # columns of the rate matrices
    'by': ['site','period'],                # groups of the summary matrices
    }

def rate_matrix(df, value='EPR', index='TransectID', columns='period'):
    "pivot of a rate (rows: index, columns: columns)"
    return df.pivot_table(index=index, columns=columns, values=value, aggfunc='mean', sort=False)

def classify_rates(rates, uncertainties=None, settings=None):
    """
    Classifies shoreline change rates in 'erosion', 'accretion' and 'stable'.
    A rate is stable when its absolute value is not larger than its uncertainty
    or than settings['stable_threshold']. If settings['high_erosion'] is given,
    the rates below this value are classified as 'high erosion'.

    Arguments:
    -----------
    rates: np.array
        shoreline change rates (positive seaward)
    uncertainties: np.array
        uncertainty of each rate (optional)
    settings: dict
        'stable_threshold' and 'high_erosion'

    Returns:
    -----------
    classes: np.array
        class of each rate (NaN where the rate is NaN)

    """

    settings = SDS_tools.get_settings(DEFAULT_SETTINGS, settings)
    rates = np.asarray(rates, dtype=float)
    classes = np.full(rates.shape, np.nan, dtype=object)
    classes[rates < 0] = 'erosion'
    classes[rates > 0] = 'accretion'
    if settings['high_erosion'] is not None:
        classes[rates < settings['high_erosion']] = 'high erosion'
    stable = np.abs(rates) <= settings['stable_threshold']
    if uncertainties is not None:
        uncertainties = np.asarray(uncertainties, dtype=float)
        stable = np.logical_or(stable, np.abs(rates) <= uncertainties)
    classes[stable] = 'stable'

    return classes

def class_labels(settings):
    "classes used by classify_rates"
    labels = ['erosion','accretion','stable']
    if settings['high_erosion'] is not None:
        labels = ['high erosion'] + labels
    return labels

def summary_matrix(df, value='EPR', by=('site','period'), uncertainty=None, settings=None):
    """
    Summary statistics of a rate for each group (by default each site and
    period): mean, std, min, max, number of transects and percentage of
    transects in each class.

    Arguments:
    -----------
    df: pd.DataFrame
        rates table (e.g. compiled with SDS_dsas.compile_rates)
    value: str
        name of the rate column
    by: list of str
        columns defining the groups
    uncertainty: str
        name of the column with the uncertainty of the rate (optional)
    settings: dict
        'stable_threshold' and 'high_erosion'

    Returns:
    -----------
    df_summary: pd.DataFrame
        one row per group

    """

    settings = SDS_tools.get_settings(DEFAULT_SETTINGS, settings)
    by = [by] if isinstance(by, str) else list(by)
    df = df.copy()
    unc = df[uncertainty] if uncertainty is not None and uncertainty in df.columns else None
    df['class'] = classify_rates(df[value], unc, settings)

    grouped = df.groupby(by, sort=False)
    df_summary = grouped[value].agg(['mean','std','min','max','count'])
    df_summary = df_summary.rename(columns={'count':'n'})
    for label in class_labels(settings):
        col = 'pct_' + label.replace(' ','_')
        df_summary[col] = grouped['class'].apply(lambda c: 100*np.sum(c == label)/max(c.notna().sum(), 1))

    return df_summary.reset_index()

def assemble_matrices(df, settings=None):
    """
    Assembles the matrices of a rates table: for each rate in settings['rates']
    the rate matrix, the matrix of the classes and the summary matrix.

    Returns a dict of pd.DataFrame named '<rate>', '<rate>_class' and
    '<rate>_summary'.
    """

    settings = SDS_tools.get_settings(DEFAULT_SETTINGS, settings)
    by = [_ for _ in settings['by'] if _ in df.columns]
    index = settings['index']
    if 'site' in df.columns and df['site'].nunique() > 1 and index != 'site':
        index = ['site', index]
    matrices = dict([])
    for rate in settings['rates']:
        if rate not in df.columns:
            logger.info('%s not in the rates table, no matrix', rate)
            continue
        unc_col = settings['uncertainty'].get(rate)
        unc = df[unc_col] if unc_col in df.columns else None
        df_class = df.copy()
        df_class['class'] = classify_rates(df[rate], unc, settings)
        matrices[rate] = rate_matrix(df, rate, index, settings['columns'])
        matrices[rate + '_class'] = df_class.pivot_table(index=index, columns=settings['columns'],
                                                         values='class', aggfunc='first', sort=False)
        if len(by) > 0:
            matrices[rate + '_summary'] = summary_matrix(df, rate, by, unc_col, settings)

    return matrices

def save_matrices(matrices, filepath, sitename):
    """
    Saves each matrix in a .csv file named <sitename>_<matrix>.csv

    Returns the list of the files written.
    """
    if not os.path.exists(filepath):
        os.makedirs(filepath)
    fns = []
    for name in matrices.keys():
        fn = os.path.join(filepath, '%s_%s.csv'%(sitename, name))
        index = not isinstance(matrices[name].index, pd.RangeIndex)
        matrices[name].to_csv(fn, sep=',', index=index)
        fns.append(fn)
    logger.info('%d matrices saved in %s', len(fns), filepath)
    print('%d matrices saved in %s' % (len(fns), filepath))
    return fns
