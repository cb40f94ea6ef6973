from setuptools import setup

setup(
    name="shorechange",
    version="1.0.0",
    description="Shoreline mapping on Google Earth Engine and shoreline change rates along transects",
    author="Kilian Vos",
    license="GPL-3.0",
    packages=["shorechange"],
    python_requires=">=3.8",
    install_requires=[
        "earthengine-api",
        "numpy",
        "scipy",
        "pandas",
        "geopandas",
        "shapely",
        "pyproj",
        "scikit-image",
        "matplotlib",
        "pytz",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
