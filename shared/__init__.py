"""Process-wide helpers: component loggers and log formatting."""
