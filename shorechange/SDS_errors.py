"""
This module contains functions to assess the accuracy of the satellite-derived
shorelines against reference surveys (RMSE and other error statistics) and to
estimate the positional uncertainty of each shoreline

Author: Kilian Vos, Water Research Laboratory, University of New South Wales
"""

# load modules
import os
import logging
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from scipy import stats

# shorechange modules
from shorechange import SDS_tools, SDS_transects
from shorechange.exceptions import InsufficientDataError

np.seterr(all='ignore') # raise/ignore divisions by 0 and nans

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    'min_days': 3,          # days under which the closest survey is used
    'max_days': 10,         # max days to a survey to do a comparison (interpolation above min_days)
    'binwidth': 3,          # binwidth of the error histogram
    'lims': [-50,50],       # limits of the error plots
    # positional uncertainty of the shorelines
    'pixel_size': {'L5':30,'L7':30,'L8':30,'L9':30,'S2':10,'composite':10},
    'georef_default': 10,   # georeferencing error (m) of S2 images flagged PASSED and composites
    'georef_failed': 20,    # georeferencing error (m) of S2 images flagged FAILED
    'extraction_rmse': 0,   # error (m) of the shoreline extraction (RMSE against surveys)
    'tide_error': 0,        # horizontal error (m) of the tidal correction
    }

###################################################################################################
# COMPARISON WITH SURVEYS
###################################################################################################

def match_reference(dates_sat, chain_sat, dates_ref, chain_ref, settings):
    """
    Finds the surveyed position corresponding to each satellite-derived
    position: if a survey is within settings['min_days'] the closest survey
    is used, if the closest survey is within settings['max_days'] the surveys
    before and after the satellite date are linearly interpolated, otherwise
    NaN is returned.

    KV WRL 2018

    Arguments:
    -----------
    dates_sat: list of datetimes
        dates of the satellite-derived positions
    chain_sat: np.array
        satellite-derived positions (NaN positions are not matched)
    dates_ref: list of datetimes
        dates of the surveys (same timezone as dates_sat)
    chain_ref: np.array
        surveyed positions
    settings: dict
        'min_days' and 'max_days'

    Returns:
    -----------
    chain_int: np.array
        surveyed position matched to each satellite date (NaN if no match)

    """

    chain_sat = np.asarray(chain_sat, dtype=float)
    chain_ref = np.asarray(chain_ref, dtype=float)
    # surveys sorted in time without NaNs
    t_ref = np.array([pd.Timestamp(_).timestamp() for _ in dates_ref])/86400
    idx_ref = np.where(~np.isnan(chain_ref))[0]
    idx_ref = idx_ref[np.argsort(t_ref[idx_ref])]
    t_ref = t_ref[idx_ref]
    chain_ref = chain_ref[idx_ref]

    chain_int = np.nan*np.ones(len(dates_sat))
    if len(t_ref) == 0:
        return chain_int
    for k, date in enumerate(dates_sat):
        if np.isnan(chain_sat[k]):
            continue
        days_diff = t_ref - pd.Timestamp(date).timestamp()/86400
        if np.min(np.abs(days_diff)) > settings['max_days']:
            continue
        # if a survey is close enough take that point (no interpolation)
        if np.min(np.abs(days_diff)) < settings['min_days']:
            chain_int[k] = chain_ref[np.argmin(np.abs(days_diff))]
        # otherwise interpolate between the surveys before and after
        elif np.any(days_diff > 0) and np.any(days_diff < 0):
            idx_after = np.where(days_diff > 0)[0][0]
            idx_before = idx_after - 1
            chain_int[k] = np.interp(0, days_diff[[idx_before, idx_after]],
                                     chain_ref[[idx_before, idx_after]])

    return chain_int

def error_statistics(chain_sat, chain_ref):
    """
    Error statistics of the satellite-derived positions against the surveyed
    positions (pairs with a NaN are ignored).

    Arguments:
    -----------
    chain_sat: np.array
        satellite-derived positions
    chain_ref: np.array
        surveyed positions

    Returns:
    -----------
    errors: dict
        'n', 'rmse', 'mean' (bias), 'std', 'median', 'q90' (90th percentile of
        the absolute errors), 'R2' and 'slope' of the linear fit

    """

    chain_sat = np.asarray(chain_sat, dtype=float)
    chain_ref = np.asarray(chain_ref, dtype=float)
    idx = np.logical_and(~np.isnan(chain_sat), ~np.isnan(chain_ref))
    if np.sum(idx) == 0:
        raise InsufficientDataError('No pairs of satellite and surveyed positions')
    chain_sat = chain_sat[idx]
    chain_ref = chain_ref[idx]
    chain_error = chain_sat - chain_ref

    errors = {'n': len(chain_error),
              'rmse': np.sqrt(np.mean((chain_error)**2)),
              'mean': np.mean(chain_error),
              'std': np.std(chain_error),
              'median': np.median(chain_error),
              'q90': np.percentile(np.abs(chain_error), 90),
              'R2': np.nan,
              'slope': np.nan}
    if len(chain_ref) > 1 and np.ptp(chain_ref) > 0:
        reg = stats.linregress(chain_ref, chain_sat)
        errors['R2'] = reg.rvalue**2
        errors['slope'] = reg.slope

    return errors

def compute_rmse(df_sat, df_ref, settings=None, satnames=None):
    """
    Compares the satellite-derived time-series with the surveyed time-series
    along each transect found in both.

    Arguments:
    -----------
    df_sat: pd.DataFrame
        satellite-derived time-series ('dates', optional 'satname' and one
        column per transect)
    df_ref: pd.DataFrame
        surveyed time-series ('dates' and one column per transect)
    settings: dict
        'min_days' and 'max_days' (see match_reference)
    satnames: list of str
        satellite mission of each row of df_sat (defaults to df_sat['satname'])

    Returns:
    -----------
    rmse: dict of pd.DataFrame
        'transects': statistics per transect, 'satellites': statistics per
        satellite mission, 'all': statistics of all the pairs, 'pairs': the
        matched positions

    """

    settings = SDS_tools.get_settings(DEFAULT_SETTINGS, settings)
    if satnames is None:
        satnames = df_sat['satname'] if 'satname' in df_sat.columns else ['all']*len(df_sat)
    satnames = list(satnames)
    transects = [_ for _ in SDS_transects.transect_columns(df_sat)
                 if _ in SDS_transects.transect_columns(df_ref)]
    if len(transects) == 0:
        raise InsufficientDataError('No transects in common between the two time-series')

    pairs = []
    rows = []
    for key in transects:
        chain_int = match_reference(list(df_sat['dates']), df_sat[key].values,
                                    list(df_ref['dates']), df_ref[key].values, settings)
        df_pairs = pd.DataFrame({'dates': list(df_sat['dates']), 'satname': satnames,
                                 'TransectID': key, 'satellite': df_sat[key].values,
                                 'survey': chain_int}).dropna(subset=['satellite','survey'])
        pairs.append(df_pairs)
        if len(df_pairs) == 0:
            logger.info('No survey close to the satellite dates along transect %s', key)
            continue
        rows.append(dict(TransectID=key, **error_statistics(df_pairs['satellite'], df_pairs['survey'])))
    df_pairs = pd.concat(pairs, ignore_index=True)
    if len(df_pairs) == 0:
        raise InsufficientDataError('No survey within %d days of the satellite dates'%settings['max_days'])

    rmse = dict([])
    rmse['transects'] = pd.DataFrame(rows)
    rmse['satellites'] = pd.DataFrame([dict(satname=sat, **error_statistics(df['satellite'], df['survey']))
                                       for sat, df in df_pairs.groupby('satname')])
    rmse['all'] = pd.DataFrame([error_statistics(df_pairs['satellite'], df_pairs['survey'])])
    rmse['pairs'] = df_pairs
    logger.info('RMSE of %d pairs along %d transects: %.1f m', len(df_pairs), len(rows),
                rmse['all']['rmse'].iloc[0])

    return rmse

###################################################################################################
# POSITIONAL UNCERTAINTY
###################################################################################################

def positional_uncertainty(components):
    """
    Total positional uncertainty as the quadrature sum of independent error
    components (scalars or arrays of the same length).
    """
    return np.sqrt(np.sum([np.square(np.asarray(_, dtype=float)) for _ in components], axis=0))

def _georef_error(geoaccuracy, settings):
    "georeferencing error in metres from the RMSE (Landsat) or the quality flag (S2, composites)"
    if isinstance(geoaccuracy, str):
        if geoaccuracy.upper() == 'FAILED':
            return settings['georef_failed']
        return settings['georef_default']
    return float(geoaccuracy)

def shoreline_uncertainty(output, settings=None):
    """
    Positional uncertainty of each mapped shoreline, combining the pixel size
    of the mission, the georeferencing error of the image, the error of the
    shoreline extraction and the error of the tidal correction.

    Arguments:
    -----------
    output: dict
        output dict with the keys 'satname' and 'geoaccuracy'
    settings: dict
        'pixel_size', 'georef_default', 'georef_failed', 'extraction_rmse' and
        'tide_error' (see DEFAULT_SETTINGS)

    Returns:
    -----------
    uncertainty: np.array
        uncertainty in metres of each shoreline

    """

    settings = SDS_tools.get_settings(DEFAULT_SETTINGS, settings)
    pixel = np.array([settings['pixel_size'].get(_, max(settings['pixel_size'].values()))
                      for _ in output['satname']], dtype=float)
    georef = np.array([_georef_error(_, settings) for _ in output['geoaccuracy']], dtype=float)
    n = len(pixel)
    extraction = settings['extraction_rmse']*np.ones(n)
    tide = settings['tide_error']*np.ones(n)

    return positional_uncertainty([pixel, georef, extraction, tide])

###################################################################################################
# PLOTTING
###################################################################################################

def plot_errors(errors, satnames, fn, settings=None):
    """
    Plots the histogram of the errors with a fitted normal distribution and the
    boxplots of the errors per satellite mission.

    KV WRL 2018

    Arguments:
    -----------
    errors: np.array
        satellite minus surveyed positions
    satnames: list of str
        satellite mission of each error
    fn: str
        filepath + filename of the figure
    settings: dict
        'binwidth' and 'lims'

    Returns:
    -----------
    fig: matplotlib.figure.Figure

    """

    settings = SDS_tools.get_settings(DEFAULT_SETTINGS, settings)
    errors = np.asarray(errors, dtype=float)
    satnames = np.array(satnames)
    rmse = np.sqrt(np.mean(errors**2))

    fig,ax = plt.subplots(1,2,figsize=(15,5), tight_layout=True)
    # histogram
    ax[0].grid(which='major',linestyle=':',color='0.5')
    ax[0].axvline(x=0, ls='--', lw=1.5, color='k')
    binwidth = settings['binwidth']
    bins = np.arange(min(errors), max(errors) + binwidth, binwidth)
    ax[0].hist(errors, bins=bins, density=True, color='0.6', edgecolor='k', alpha=0.5)
    mu, std = stats.norm.fit(errors)
    x = np.linspace(settings['lims'][0], settings['lims'][1], 100)
    ax[0].plot(x, stats.norm.pdf(x, mu, std), 'r-', linewidth=1)
    ax[0].set(xlabel='error [m]', ylabel='pdf', xlim=settings['lims'])
    str_stats = ' rmse = %.1f\n mean = %.1f\n std = %.1f\n q90 = %.1f' % (rmse, np.mean(errors), np.std(errors),
                                                                          np.percentile(np.abs(errors), 90))
    ax[0].text(0, 0.98, str_stats, va='top', transform=ax[0].transAxes, fontsize=14)

    # boxplot per satellite mission
    labels = list(np.unique(satnames))
    data = [errors[satnames == sat] for sat in labels]
    ax[1].yaxis.grid()
    bp = ax[1].boxplot(data, sym='k.', patch_artist=True)
    for median in bp['medians']:
        median.set(color='k', linewidth=1.5)
    for j, boxes in enumerate(bp['boxes']):
        boxes.set(facecolor='C'+str(j))
        median_data = np.median(data[j])
        ax[1].text(j+1, median_data+1, '%.1f' % median_data, horizontalalignment='center', fontsize=14)
        ax[1].text(j+1+0.35, median_data+1, 'n=%d' % len(data[j]), ha='center', va='center',
                   fontsize=12, rotation='vertical')
    ax[1].set_xticks(np.arange(1, len(labels)+1))
    ax[1].set_xticklabels(labels)
    ax[1].set(ylabel='error [m]', ylim=settings['lims'])

    if not os.path.exists(os.path.dirname(os.path.abspath(fn))):
        os.makedirs(os.path.dirname(os.path.abspath(fn)))
    fig.savefig(fn, dpi=150)
    plt.close(fig)

    return fig
