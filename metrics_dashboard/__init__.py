"""Marketing Metrics Dashboard"""

__version__ = "1.0.0"
