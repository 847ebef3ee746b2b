"""
geoconvert - batch conversion orchestration for geospatial vector files.

This package groups uploaded files into convertible datasets, dispatches
them to a background conversion engine, resolves coordinate reference
systems and produces per-run conversion reports.
"""

__version__ = "0.1.0"
