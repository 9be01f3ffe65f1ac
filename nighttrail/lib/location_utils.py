#!/usr/bin/env python3
"""
Location utilities for distance calculations and canvas projection
"""

import math
from typing import Iterable, NamedTuple, Optional, Tuple

import numpy as np

# Mean Earth radius used by the haversine formula
EARTH_RADIUS_M = 6_371_000.0

# Length of one degree of latitude on the haversine sphere
METERS_PER_DEGREE = 2 * math.pi * EARTH_RADIUS_M / 360.0

DEFAULT_PADDING = 0.1


class Coordinate(NamedTuple):
    """A (latitude, longitude) pair in decimal degrees"""

    latitude: float
    longitude: float


class MapBounds(NamedTuple):
    """Geographic bounding box"""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @property
    def lat_range(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def lon_range(self) -> float:
        return self.max_lon - self.min_lon

    @property
    def center(self) -> Coordinate:
        return Coordinate((self.min_lat + self.max_lat) / 2, (self.min_lon + self.max_lon) / 2)


class LocationUtils:
    """Utilities for location-based operations"""

    @staticmethod
    def distance_meters(a: Tuple[float, float], b: Tuple[float, float]) -> float:
        """
        Calculate the great circle distance between two points on Earth
        using the Haversine formula

        Args:
            a: (lat, lon) of first point (in degrees)
            b: (lat, lon) of second point (in degrees)

        Returns:
            Distance in meters
        """
        lat1_rad = math.radians(a[0])
        lon1_rad = math.radians(a[1])
        lat2_rad = math.radians(b[0])
        lon2_rad = math.radians(b[1])

        dlat = lat2_rad - lat1_rad
        dlon = lon2_rad - lon1_rad

        h = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
        # Rounding can push h a hair above 1 for antipodal points
        c = 2 * math.asin(math.sqrt(min(1.0, h)))

        return EARTH_RADIUS_M * c

    @staticmethod
    def is_within_radius(point: Tuple[float, float], center: Tuple[float, float], radius_m: float) -> bool:
        """
        Check if a point is within (or on the edge of) a given radius of a center point
        """
        return LocationUtils.distance_meters(point, center) <= radius_m

    @staticmethod
    def path_length(coordinates: Iterable[Tuple[float, float]]) -> float:
        """Sum of consecutive great-circle distances, 0 for fewer than 2 points"""
        total = 0.0
        previous = None
        for coord in coordinates:
            if previous is not None:
                total += LocationUtils.distance_meters(previous, coord)
            previous = coord
        return total

    @staticmethod
    def bounding_box(coordinates: Iterable[Tuple[float, float]]) -> Optional[MapBounds]:
        """
        Get the bounding box of a set of coordinates

        Args:
            coordinates: Iterable of (lat, lon) pairs

        Returns:
            MapBounds, or None if there are no coordinates
        """
        coords_array = np.array(list(coordinates), dtype=float)
        if coords_array.size == 0:
            return None

        return MapBounds(
            min_lat=float(np.min(coords_array[:, 0])),
            max_lat=float(np.max(coords_array[:, 0])),
            min_lon=float(np.min(coords_array[:, 1])),
            max_lon=float(np.max(coords_array[:, 1])),
        )

    @staticmethod
    def pad_bounds(bounds: MapBounds, padding: float = DEFAULT_PADDING) -> MapBounds:
        """Grow bounds by a fraction of their range on every side"""
        lat_padding = bounds.lat_range * padding
        lon_padding = bounds.lon_range * padding
        return MapBounds(
            min_lat=bounds.min_lat - lat_padding,
            max_lat=bounds.max_lat + lat_padding,
            min_lon=bounds.min_lon - lon_padding,
            max_lon=bounds.max_lon + lon_padding,
        )

    @staticmethod
    def project(coordinate: Tuple[float, float], bounds: MapBounds, canvas_size: Tuple[int, int],
                padding: float = DEFAULT_PADDING) -> Tuple[float, float]:
        """
        Map a coordinate into canvas space

        Longitude maps linearly to x, latitude linearly to y with north at the
        top. Bounds are padded by `padding` of their range first. An axis with
        zero range (e.g. a route that never moved east-west) maps to the
        middle of the canvas.

        Args:
            coordinate: (lat, lon) pair
            bounds: Unpadded bounds of the data being drawn
            canvas_size: (width, height) in pixels
            padding: Padding as fraction of range (default 10%)

        Returns:
            (x, y) in pixels
        """
        width, height = canvas_size
        padded = LocationUtils.pad_bounds(bounds, padding)

        if padded.lon_range > 0:
            x = (coordinate[1] - padded.min_lon) / padded.lon_range * width
        else:
            x = width / 2
        if padded.lat_range > 0:
            y = (1 - (coordinate[0] - padded.min_lat) / padded.lat_range) * height
        else:
            y = height / 2

        return (x, y)

    @staticmethod
    def meters_per_degree(latitude: float) -> Tuple[float, float]:
        """
        Length in meters of one degree of latitude and one degree of longitude
        at the given latitude
        """
        return METERS_PER_DEGREE, METERS_PER_DEGREE * math.cos(math.radians(latitude))

    @staticmethod
    def is_valid_coordinate(latitude: float, longitude: float) -> bool:
        """Finite latitude in [-90, 90] and longitude in [-180, 180]"""
        if not (math.isfinite(latitude) and math.isfinite(longitude)):
            return False
        return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0
