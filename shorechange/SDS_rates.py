"""
This module contains functions to compute shoreline change rates along
transects: net shoreline movement (NSM), end point rate (EPR), linear
regression rate (LRR) and weighted linear regression (WLR), with the
propagation of the shoreline position uncertainty

Author: Kilian Vos, Water Research Laboratory, University of New South Wales
"""

# load modules
import logging
import numpy as np
import pandas as pd
from scipy import stats

# shorechange modules
from shorechange import SDS_tools, SDS_transects

np.seterr(all='ignore') # raise/ignore divisions by 0 and nans

logger = logging.getLogger(__name__)

DAYS_IN_YEAR = 365.25

DEFAULT_SETTINGS = {
    'min_shorelines': 3,    # minimum number of shorelines along a transect to compute rates
    'confidence': 0.9,      # confidence level of the regression intervals (LCI, WCI)
    }

# columns of the rates table, named after the DSAS fields
RATE_COLUMNS = ['ShrCount','SCE','NSM','NSMunc','EPR','EPRunc','LRR','LR2','LSE','LCI',
                'WLR','WR2','WSE','WCI','StartDate','EndDate']

def years_between(d0, d1):
    "elapsed time in years (of 365.25 days) between two datetimes"
    return (pd.Timestamp(d1) - pd.Timestamp(d0)).total_seconds()/(DAYS_IN_YEAR*24*3600)

def _decimal_years(dates):
    "time in years since the first date"
    return np.array([years_between(dates[0], _) for _ in dates])

def _sort_valid(dates, positions, uncertainties=None):
    "remove the NaN positions and sort chronologically"
    dates = list(dates)
    positions = np.asarray(positions, dtype=float)
    idx = [k for k in np.argsort(np.array([pd.Timestamp(_).value for _ in dates]), kind='stable')
           if not np.isnan(positions[k])]
    dates_sorted = [dates[k] for k in idx]
    if uncertainties is None:
        return dates_sorted, positions[idx], None
    return dates_sorted, positions[idx], np.asarray(uncertainties, dtype=float)[idx]

###################################################################################################
# END POINT METHODS
###################################################################################################

def compute_nsm(dates, positions):
    """
    Net shoreline movement: distance between the youngest and the oldest
    shoreline positions (positive seaward). NaN with less than 2 positions.
    """
    dates, positions, _ = _sort_valid(dates, positions)
    if len(positions) < 2:
        return np.nan
    return positions[-1] - positions[0]

def compute_epr(dates, positions):
    """
    End point rate: net shoreline movement divided by the time elapsed between
    the oldest and the youngest shorelines (m/year).
    """
    dates, positions, _ = _sort_valid(dates, positions)
    if len(positions) < 2:
        return np.nan
    years = years_between(dates[0], dates[-1])
    if years <= 0:
        return np.nan
    return (positions[-1] - positions[0])/years

def nsm_uncertainty(u_first, u_last):
    "uncertainty of the NSM, quadrature sum of the uncertainties of the two shorelines"
    return np.sqrt(u_first**2 + u_last**2)

def epr_uncertainty(u_first, u_last, years):
    "uncertainty of the EPR (m/year)"
    if years <= 0:
        return np.nan
    return np.sqrt(u_first**2 + u_last**2)/years

###################################################################################################
# REGRESSION METHODS
###################################################################################################

def compute_lrr(dates, positions, confidence=0.9):
    """
    Linear regression rate: least-squares fit of the shoreline positions
    against time.

    Arguments:
    -----------
    dates: list of datetimes
        dates of the shorelines
    positions: np.array
        cross-shore positions (NaNs are ignored)
    confidence: float
        confidence level of the interval around the rate

    Returns:
    -----------
    lrr: dict
        'LRR' (m/year), 'intercept', 'LR2' (coefficient of determination),
        'LSE' (standard error of the estimate), 'se_slope' (standard error of
        the rate) and 'LCI' (half-width of the confidence interval of the
        rate), all NaN with less than 3 positions

    """

    lrr = dict.fromkeys(['LRR','intercept','LR2','LSE','se_slope','LCI'], np.nan)
    dates, positions, _ = _sort_valid(dates, positions)
    n = len(positions)
    if n < 3:
        return lrr
    x = _decimal_years(dates)
    if np.ptp(x) == 0:
        return lrr
    reg = stats.linregress(x, positions)
    residuals = positions - (reg.intercept + reg.slope*x)
    lrr['LRR'] = reg.slope
    lrr['intercept'] = reg.intercept
    lrr['LR2'] = reg.rvalue**2
    lrr['LSE'] = np.sqrt(np.sum(residuals**2)/(n - 2))
    lrr['se_slope'] = reg.stderr
    lrr['LCI'] = stats.t.ppf((1 + confidence)/2, n - 2)*reg.stderr

    return lrr

def compute_wlr(dates, positions, uncertainties, confidence=0.9):
    """
    Weighted linear regression rate: the shorelines are weighted by the
    inverse of the square of their uncertainty, so that more certain
    shorelines have more influence on the rate.

    Arguments:
    -----------
    dates: list of datetimes
        dates of the shorelines
    positions: np.array
        cross-shore positions (NaNs are ignored)
    uncertainties: np.array
        positional uncertainty of each shoreline (strictly positive)
    confidence: float
        confidence level of the interval around the rate

    Returns:
    -----------
    wlr: dict
        'WLR' (m/year), 'intercept', 'WR2', 'WSE', 'se_slope' and 'WCI',
        all NaN with less than 3 positions

    """

    wlr = dict.fromkeys(['WLR','intercept','WR2','WSE','se_slope','WCI'], np.nan)
    dates, positions, uncertainties = _sort_valid(dates, positions, uncertainties)
    n = len(positions)
    if n < 3:
        return wlr
    if np.any(np.isnan(uncertainties)) or np.any(uncertainties <= 0):
        raise ValueError('uncertainties must be positive to weight the regression')
    x = _decimal_years(dates)
    if np.ptp(x) == 0:
        return wlr
    w = 1/uncertainties**2
    x_mean = np.sum(w*x)/np.sum(w)
    y_mean = np.sum(w*positions)/np.sum(w)
    sxx = np.sum(w*(x - x_mean)**2)
    sxy = np.sum(w*(x - x_mean)*(positions - y_mean))
    slope = sxy/sxx
    intercept = y_mean - slope*x_mean
    ss_res = np.sum(w*(positions - (intercept + slope*x))**2)
    ss_tot = np.sum(w*(positions - y_mean)**2)
    wlr['WLR'] = slope
    wlr['intercept'] = intercept
    wlr['WR2'] = 1 - ss_res/ss_tot if ss_tot > 0 else np.nan
    wlr['WSE'] = np.sqrt(ss_res/(n - 2))
    wlr['se_slope'] = wlr['WSE']/np.sqrt(sxx)
    wlr['WCI'] = stats.t.ppf((1 + confidence)/2, n - 2)*wlr['se_slope']

    return wlr

###################################################################################################
# RATES ALONG ALL TRANSECTS
###################################################################################################

def _uncertainty_table(uncertainties, df_ts, transects):
    "uncertainty of each position as a pd.DataFrame with the shape of the time-series"
    if uncertainties is None:
        return None
    if isinstance(uncertainties, pd.DataFrame):
        missing = [_ for _ in transects if _ not in uncertainties.columns]
        if len(missing) > 0:
            raise ValueError('No uncertainties for transects %s'%missing)
        return uncertainties[transects].reset_index(drop=True)
    unc = np.asarray(uncertainties, dtype=float)
    if unc.ndim == 0:
        unc = unc*np.ones(len(df_ts))
    if len(unc) != len(df_ts):
        raise ValueError('%d uncertainties for %d shorelines'%(len(unc), len(df_ts)))
    return pd.DataFrame({key: unc for key in transects})

def _transect_rates(dates, positions, unc, settings):
    "all the rates along one transect"
    rates = dict.fromkeys(RATE_COLUMNS, np.nan)
    dates, positions, unc = _sort_valid(dates, positions, unc)
    rates['ShrCount'] = len(positions)
    if len(positions) < settings['min_shorelines']:
        return rates
    years = years_between(dates[0], dates[-1])
    rates['SCE'] = np.max(positions) - np.min(positions)
    rates['NSM'] = compute_nsm(dates, positions)
    rates['EPR'] = compute_epr(dates, positions)
    rates['StartDate'] = pd.Timestamp(dates[0]).strftime('%Y-%m-%d')
    rates['EndDate'] = pd.Timestamp(dates[-1]).strftime('%Y-%m-%d')
    lrr = compute_lrr(dates, positions, settings['confidence'])
    for key in ['LRR','LR2','LSE','LCI']:
        rates[key] = lrr[key]
    if unc is not None:
        rates['NSMunc'] = nsm_uncertainty(unc[0], unc[-1])
        rates['EPRunc'] = epr_uncertainty(unc[0], unc[-1], years)
        if not np.any(np.isnan(unc)) and np.all(unc > 0):
            wlr = compute_wlr(dates, positions, unc, settings['confidence'])
            for key in ['WLR','WR2','WSE','WCI']:
                rates[key] = wlr[key]
    return rates

def compute_rates(df_ts, settings=None, uncertainties=None):
    """
    Computes the shoreline change rates along each transect of a time-series.

    Arguments:
    -----------
    df_ts: pd.DataFrame
        time-series with a 'dates' column and one column of cross-shore
        distances per transect (as saved by SDS_transects.save_time_series)
    settings: dict with the following keys
        'min_shorelines': int
            minimum number of shorelines, transects with less get NaN rates
        'confidence': float
            confidence level of the regression intervals
    uncertainties: float, np.array or pd.DataFrame
        positional uncertainty of the shorelines, one value for all, one per
        date or one per date and transect (columns named after the transects).
        Without uncertainties NSMunc, EPRunc and the WLR are NaN.

    Returns:
    -----------
    df_rates: pd.DataFrame
        one row per transect with the column 'TransectID' and the RATE_COLUMNS

    """

    settings = SDS_tools.get_settings(DEFAULT_SETTINGS, settings)
    df_ts = df_ts.reset_index(drop=True)
    transects = SDS_transects.transect_columns(df_ts)
    df_unc = _uncertainty_table(uncertainties, df_ts, transects)
    dates = list(df_ts['dates'])

    rows = []
    for key in transects:
        unc = None if df_unc is None else df_unc[key].values
        rates = _transect_rates(dates, df_ts[key].values, unc, settings)
        rates['TransectID'] = key
        rows.append(rates)
    df_rates = pd.DataFrame(rows, columns=['TransectID'] + RATE_COLUMNS)
    n_nan = int(np.sum(df_rates['ShrCount'] < settings['min_shorelines']))
    if n_nan > 0:
        logger.info('%d transects with less than %d shorelines', n_nan, settings['min_shorelines'])

    return df_rates

def compute_rates_by_period(df_ts, periods, settings=None, uncertainties=None):
    """
    Computes the rates separately over several periods.

    Arguments:
    -----------
    df_ts: pd.DataFrame
        time-series with a 'dates' column and one column per transect
    periods: dict
        label of each period -> [start, end] dates (both included)
    settings: dict
        see compute_rates
    uncertainties: float, np.array or pd.DataFrame
        see compute_rates

    Returns:
    -----------
    df_rates: pd.DataFrame
        rates of each transect and period, with a 'period' column

    """

    df_ts = df_ts.reset_index(drop=True)
    transects = SDS_transects.transect_columns(df_ts)
    df_unc = _uncertainty_table(uncertainties, df_ts, transects)
    dates = pd.to_datetime(df_ts['dates'], utc=True)

    df_list = []
    for label in periods.keys():
        start = pd.Timestamp(periods[label][0])
        end = pd.Timestamp(periods[label][1])
        start = start.tz_localize('UTC') if start.tzinfo is None else start
        end = end.tz_localize('UTC') if end.tzinfo is None else end
        if end <= start:
            raise ValueError('period %s ends before it starts'%label)
        idx = np.logical_and(dates >= start, dates <= end).values
        unc = None if df_unc is None else df_unc[idx]
        df_period = compute_rates(df_ts[idx], settings, unc)
        df_period.insert(0, 'period', label)
        df_list.append(df_period)

    return pd.concat(df_list, ignore_index=True)
