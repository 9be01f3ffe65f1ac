#!/usr/bin/env python3
"""
Best-effort venue naming via a Nominatim-compatible reverse geocoder
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

import requests

from . import settings

logger = logging.getLogger(__name__)

# Address fields that usually carry a venue name, most specific first
POI_FIELDS = (
    'amenity', 'pub', 'bar', 'nightclub', 'restaurant', 'cafe', 'fast_food',
    'biergarten', 'leisure', 'tourism', 'shop', 'building',
)
STREET_WORDS = ('Street', 'Avenue', 'Road', 'Lane')
CITY_FIELDS = ('city', 'town', 'village', 'municipality')
SUBURB_FIELDS = ('suburb', 'neighbourhood', 'quarter', 'city_district')

# ~1 m at the equator
CACHE_PRECISION = 5


def is_valid_business_name(name: Optional[str], address: Dict[str, str]) -> bool:
    """Reject names that are really just street addresses"""
    if not name or len(name) <= 3:
        return False

    road = address.get('road')
    house_number = address.get('house_number')
    excluded = [p for p in (road, house_number, f"{house_number or ''} {road or ''}".strip()) if p]
    if any(name == pattern or pattern in name for pattern in excluded):
        return False

    return not any(word in name for word in STREET_WORDS)


def best_venue_name(result: Dict) -> Optional[str]:
    """
    Pick the most useful name from a reverse geocoding result

    Priority: business name, POI field, "suburb, city", city, road.
    """
    address = result.get('address') or {}

    name = result.get('name')
    if is_valid_business_name(name, address):
        return name

    for field in POI_FIELDS:
        value = address.get(field)
        if value and is_valid_business_name(value, address):
            return value

    city = next((address[f] for f in CITY_FIELDS if address.get(f)), None)
    suburb = next((address[f] for f in SUBURB_FIELDS if address.get(f)), None)
    if city:
        if suburb and suburb != city:
            return f"{suburb}, {city}"
        return city

    return address.get('road')


class ReverseGeocoder:
    """Look up place names for coordinates, caching results"""

    def __init__(self, url: str = None, user_agent: str = None, timeout: float = None, max_workers: int = 2):
        self.url = url or settings.GEOCODER_URL
        self.user_agent = user_agent or settings.GEOCODER_USER_AGENT
        self.timeout = timeout if timeout is not None else settings.GEOCODER_TIMEOUT
        self.max_workers = max_workers
        self._cache: Dict[Tuple[float, float], Optional[str]] = {}
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    def lookup(self, latitude: float, longitude: float) -> Optional[str]:
        """
        Get the best venue name for a coordinate

        Args:
            latitude: Latitude in degrees
            longitude: Longitude in degrees

        Returns:
            Place name, or None if nothing useful was found or the lookup failed
        """
        key = (round(latitude, CACHE_PRECISION), round(longitude, CACHE_PRECISION))
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        params = {
            'lat': latitude,
            'lon': longitude,
            'format': 'jsonv2',
            'zoom': 18,
            'addressdetails': 1,
        }
        headers = {
            'User-Agent': self.user_agent
        }

        try:
            response = requests.get(self.url, params=params, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
            if 'error' in result:
                logger.info("❌ No place found for (%.6f, %.6f): %s", latitude, longitude, result['error'])
                name = None
            else:
                name = best_venue_name(result)
        except requests.exceptions.RequestException as e:
            logger.warning("⚠️ Error reverse geocoding (%.6f, %.6f): %s", latitude, longitude, e)
            return None
        except (KeyError, ValueError, AttributeError) as e:
            logger.warning("⚠️ Error parsing geocoding response: %s", e)
            return None

        if name:
            logger.info("✅ Found venue: %s", name)
        with self._lock:
            self._cache[key] = name
        return name

    def lookup_async(self, latitude: float, longitude: float) -> Future:
        """Run lookup() on a worker thread; the future resolves to the name or None"""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='geocoder')
        return self._executor.submit(self.lookup, latitude, longitude)

    def name_session_dwells(self, tracking_session) -> List[Future]:
        """
        Look up every unnamed dwell of a tracking session

        Each result is applied with set_place_name() as soon as it arrives.
        Clusters and renders computed earlier are not refreshed; callers
        re-run them when they want the new names.

        Returns:
            One future per scheduled lookup
        """
        futures = []
        for dwell in tracking_session.snapshot().dwells:
            if dwell.place_name:
                continue
            future = self.lookup_async(dwell.location.latitude, dwell.location.longitude)

            def apply(done: Future, dwell_id=dwell.id):
                name = done.result()
                if name:
                    tracking_session.set_place_name(dwell_id, name)

            future.add_done_callback(apply)
            futures.append(future)
        return futures

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
