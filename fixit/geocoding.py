"""Reverse geocoding for reported issue locations.

Lookups never raise: any failure is logged and reported as ``None`` so issue
creation carries on without an address.
"""

import logging
import math
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6378.137
KM_PER_DEGREE = 111.32


class Geocoder:
    """Abstract base for reverse geocoders."""

    async def reverse(self, lat: float, lng: float) -> Optional[str]:
        raise NotImplementedError


class GoogleGeocoder(Geocoder):
    API_URL = "https://maps.googleapis.com/maps/api/geocode/json"

    def __init__(self, api_key: str, timeout: float = 5.0):
        self.api_key = api_key
        self.timeout = timeout

    async def reverse(self, lat: float, lng: float) -> Optional[str]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.API_URL, params={"latlng": f"{lat},{lng}", "key": self.api_key})
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Google geocoding failed for {lat}, {lng}: {str(e)}")
            return None

        if data.get("status") == "OK" and data.get("results"):
            return data["results"][0].get("formatted_address")
        logger.info(f"No address found for {lat}, {lng}", extra={"status": data.get("status")})
        return None


class NominatimGeocoder(Geocoder):
    """OpenStreetMap Nominatim reverse lookup, used when no Google key is set."""

    API_URL = "https://nominatim.openstreetmap.org/reverse"
    ZOOM_LEVEL = 18

    def __init__(self, timeout: float = 3.0, user_agent: str = "FixIt/1.0"):
        self.timeout = timeout
        self.user_agent = user_agent

    async def reverse(self, lat: float, lng: float) -> Optional[str]:
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            logger.warning(f"Invalid coordinates: lat={lat}, lng={lng}")
            return None

        params = {"format": "json", "lat": lat, "lon": lng, "zoom": self.ZOOM_LEVEL, "addressdetails": 1}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers={"User-Agent": self.user_agent}) as client:
                response = await client.get(self.API_URL, params=params)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Nominatim geocoding failed for {lat}, {lng}: {str(e)}")
            return None

        address = data.get("address") or {}
        # Priority: road -> neighbourhood -> suburb -> city
        parts = [address[key] for key in ("road", "neighbourhood", "suburb", "city") if address.get(key)]
        if not parts:
            parts = [address[key] for key in ("state", "country") if address.get(key)]
        if parts:
            return ", ".join(parts[:3])
        return data.get("display_name")


def get_geocoder() -> Geocoder:
    """
    Factory for the configured geocoder.

    Uses Google Maps when GOOGLE_MAPS_API_KEY is set, Nominatim otherwise.
    """
    api_key = os.getenv("GOOGLE_MAPS_API_KEY", "").strip()
    if api_key:
        return GoogleGeocoder(api_key)
    return NominatimGeocoder(user_agent=os.getenv("GEOCODER_USER_AGENT", "FixIt/1.0"))


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def bounding_box(lat: float, lng: float, radius_km: float) -> tuple[float, float, float, float]:
    """(min_lat, max_lat, min_lng, max_lng) enclosing the circle; used to prefilter in SQL."""
    d_lat = radius_km / KM_PER_DEGREE
    cos_lat = math.cos(math.radians(lat))
    d_lng = 180.0 if cos_lat < 1e-6 else min(180.0, radius_km / (KM_PER_DEGREE * cos_lat))
    return lat - d_lat, lat + d_lat, lng - d_lng, lng + d_lng
