"""NightTrail: dwell detection, statistics and route images for nights out."""

__version__ = "1.0.0"
