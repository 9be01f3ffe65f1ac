"""
Configuration for the NightTrail pipeline

Values are read from environment variables (optionally from a .env file) with
sensible defaults, then handed to the services that need them.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DWELL_RADIUS_M = float(os.getenv('NIGHTTRAIL_DWELL_RADIUS_M', '25'))
DWELL_MIN_SECONDS = float(os.getenv('NIGHTTRAIL_DWELL_MIN_SECONDS', str(20 * 60)))
MAX_ACCURACY_M = float(os.getenv('NIGHTTRAIL_MAX_ACCURACY_M', '50'))
AUTO_STOP_HOURS = float(os.getenv('NIGHTTRAIL_AUTO_STOP_HOURS', '8'))
HEATMAP_INTENSITY = os.getenv('NIGHTTRAIL_HEATMAP_INTENSITY', 'medium').strip().lower()

DATA_DIR = Path(os.getenv('NIGHTTRAIL_DATA_DIR', str(Path.home() / '.nighttrail'))).expanduser()
SESSIONS_FILENAME = 'sessions.json'

# Nominatim (OpenStreetMap) reverse geocoding - free, requires a User-Agent
GEOCODER_URL = os.getenv('NIGHTTRAIL_GEOCODER_URL', 'https://nominatim.openstreetmap.org/reverse').strip()
GEOCODER_USER_AGENT = os.getenv('NIGHTTRAIL_GEOCODER_USER_AGENT', 'NightTrail/1.0 (night session tracker)')
GEOCODER_TIMEOUT = float(os.getenv('NIGHTTRAIL_GEOCODER_TIMEOUT', '10'))


@dataclass(frozen=True)
class TrackingConfig:
    """Thresholds used while tracking a session."""

    dwell_radius_m: float = 25.0
    dwell_min_seconds: float = 20 * 60.0
    # Fixes reporting worse (or negative) horizontal accuracy are dropped.
    # None disables the filter.
    max_accuracy_m: float | None = 50.0
    # 0 disables auto-stop
    auto_stop_hours: float = 8.0

    def __post_init__(self):
        if not self.dwell_radius_m > 0:
            raise ValueError(f"dwell_radius_m must be positive, got {self.dwell_radius_m}")
        if not self.dwell_min_seconds > 0:
            raise ValueError(f"dwell_min_seconds must be positive, got {self.dwell_min_seconds}")
        if self.auto_stop_hours < 0:
            raise ValueError(f"auto_stop_hours cannot be negative, got {self.auto_stop_hours}")

    @classmethod
    def from_env(cls) -> 'TrackingConfig':
        """Build a config from the NIGHTTRAIL_* environment variables."""

        return cls(
            dwell_radius_m=DWELL_RADIUS_M,
            dwell_min_seconds=DWELL_MIN_SECONDS,
            max_accuracy_m=MAX_ACCURACY_M if MAX_ACCURACY_M > 0 else None,
            auto_stop_hours=AUTO_STOP_HOURS,
        )


class HeatmapIntensity(Enum):
    """Heatmap presets: (cluster radius m, base render radius m, radius steps, opacity multiplier)"""

    LOW = ('low', 50.0, 100.0, 3, 0.3)
    MEDIUM = ('medium', 75.0, 200.0, 5, 0.5)
    HIGH = ('high', 100.0, 300.0, 7, 0.7)

    def __init__(self, label, cluster_radius, base_radius, radius_steps, opacity_multiplier):
        self.label = label
        self.cluster_radius = cluster_radius
        self.base_radius = base_radius
        self.radius_steps = radius_steps
        self.opacity_multiplier = opacity_multiplier

    @classmethod
    def from_name(cls, name: str) -> 'HeatmapIntensity':
        for preset in cls:
            if preset.label == name.strip().lower():
                return preset
        raise ValueError(f"Unknown heatmap intensity: {name!r} (choose low, medium or high)")

    @classmethod
    def default(cls) -> 'HeatmapIntensity':
        return cls.from_name(HEATMAP_INTENSITY)
