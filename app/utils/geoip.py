import ipaddress
import logging
import math
from typing import Optional

import httpx

from app.config import GEOIP_URL, GEOIP_TIMEOUT
from app.schemas.security import GeoIpInfo

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371e3


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_public_address(network_identity: str) -> bool:
    try:
        address = ipaddress.ip_address(network_identity)
    except ValueError:
        return False
    return address.is_global


class GeoIpLookup:
    """Country and proxy hints for a network identity."""

    async def lookup(self, network_identity: str) -> Optional[GeoIpInfo]:
        return None


class HttpGeoIpLookup(GeoIpLookup):
    """
    Client for an ip-api compatible service:
    GET {base_url}/{ip}?fields=status,countryCode,proxy,hosting

    Args:
        base_url: e.g. http://ip-api.com/json
        timeout: seconds for the whole request
    """

    def __init__(self, base_url: str = GEOIP_URL, timeout: float = GEOIP_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def lookup(self, network_identity: str) -> Optional[GeoIpInfo]:
        if not self.base_url or not is_public_address(network_identity):
            return None
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/{network_identity}",
                    params={"fields": "status,countryCode,proxy,hosting"},
                )
            if response.status_code != 200:
                logger.warning(f"⚠️ GeoIP lookup answered HTTP {response.status_code} for {network_identity}")
                return None
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"⚠️ GeoIP lookup failed for {network_identity}: {e}")
            return None

        if data.get("status") != "success":
            return None
        return GeoIpInfo(
            country_code=data.get("countryCode"),
            proxy=bool(data.get("proxy") or data.get("hosting")),
        )


def build_geoip_lookup() -> GeoIpLookup:
    return HttpGeoIpLookup() if GEOIP_URL else GeoIpLookup()
