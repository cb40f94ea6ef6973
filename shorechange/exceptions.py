"""
Exceptions raised by the shorechange modules

Author: Kilian Vos, Water Research Laboratory, University of New South Wales
"""


class InvalidSettings(Exception):
    """
    Raised when a settings dictionnary contains unknown keys or invalid values.

    Args:
        message: Error message.
        keys: Offending keys.
    """

    def __init__(self, message: str = "", keys: list = None):
        self.keys = keys if keys is not None else []
        self.msg = f"{message}"
        if self.keys:
            self.msg += f" ({', '.join([str(_) for _ in self.keys])})"
        super().__init__(self.msg)

    def __str__(self):
        return f"{self.msg}"


class MissingColumnsError(Exception):
    """
    Raised when a table (csv, shapefile attributes) is missing required columns.

    Args:
        missing: Names of the missing columns.
        source: Name of the file or table that was read.
    """

    def __init__(self, missing: list, source: str = ""):
        self.missing = list(missing)
        self.source = source
        self.msg = f"Missing columns {self.missing}"
        if source:
            self.msg += f" in {source}"
        super().__init__(self.msg)

    def __str__(self):
        return f"{self.msg}"


class InsufficientDataError(Exception):
    """
    Raised when there are not enough data points to compute a statistic.

    Args:
        message: Error message.
    """

    def __init__(self, message: str = ""):
        self.msg = f"{message}"
        super().__init__(self.msg)

    def __str__(self):
        return f"{self.msg}"


class InvalidDateRange(Exception):
    """
    Raised when the start and end dates are not in chronological order.

    Args:
        dates: The two dates provided by the user.
    """

    def __init__(self, dates: list):
        self.dates = dates
        self.msg = f"Verify that your dates are in the correct chronological order: {dates}"
        super().__init__(self.msg)

    def __str__(self):
        return f"{self.msg}"


class RegionTooLarge(Exception):
    """
    Raised when the region of interest has more pixels than can be sampled
    from Earth Engine in a single request.

    Args:
        n_pixels: Number of pixels of the region at the sampling pixel size.
        max_pixels: Maximum number of pixels per request.
        pixel_size: Sampling pixel size in metres.
    """

    def __init__(self, n_pixels: int, max_pixels: int, pixel_size: float):
        self.n_pixels = n_pixels
        self.max_pixels = max_pixels
        self.msg = (f"The region has {n_pixels} pixels at {pixel_size} m, more than the "
                    f"{max_pixels} pixels that can be sampled at once. Use a smaller polygon.")
        super().__init__(self.msg)

    def __str__(self):
        return f"{self.msg}"
