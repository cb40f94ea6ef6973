"""
shorechange: shoreline mapping on Google Earth Engine and shoreline change
analysis along transects (rates, errors, DSAS outputs and summary matrices)
"""

__version__ = "1.0.0"
