"""OpenET Pipeline - evapotranspiration time series from the OpenET API as tables."""

__version__ = "0.1.0"
