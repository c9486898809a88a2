"""ServiceSync admin API: review and act on the staging set over HTTP."""

__version__ = "1.0.0"
