"""Visit analytics enrichment.

Turns the raw request metadata of a redirect (user agent, client address,
referer) into a complete VisitDetails descriptor. Enrichment never fails:
anything that cannot be determined falls back to a documented default.

Geolocation uses a local MaxMind GeoIP2/GeoLite2 city database. Download one
from https://dev.maxmind.com/geoip/geolite2-free-geolocation-data and point
GEOIP_DB_PATH at it; without a database every location field is "Unknown".
"""

import logging
import os
from functools import lru_cache

import geoip2.database
import geoip2.errors
from user_agents import parse

from shortlink.enums import DeviceType
from shortlink.schemas import (
    DIRECT_REFERER,
    UNKNOWN,
    BrowserInfo,
    DeviceInfo,
    LocationInfo,
    OSInfo,
    VisitDetails,
)

__all__ = ["GeoLocator", "enrich", "normalize_ip", "parse_user_agent"]

logger = logging.getLogger("shortlink.analytics")

IPV4_MAPPED_PREFIX = "::ffff:"

# ua-parser reports unrecognised families as "Other"
_UNRECOGNISED_FAMILY = "Other"


def _known(value: str | None) -> str:
    if not value or value == _UNRECOGNISED_FAMILY:
        return UNKNOWN
    return value


def normalize_ip(address: str | None) -> str | None:
    """Strip the IPv6-mapped IPv4 prefix, e.g. ``::ffff:203.0.113.5``."""
    if not address:
        return None
    address = address.strip()
    if address.startswith(IPV4_MAPPED_PREFIX):
        return address[len(IPV4_MAPPED_PREFIX):]
    return address


@lru_cache(maxsize=1000)
def parse_user_agent(ua_string: str) -> tuple[DeviceInfo, BrowserInfo, OSInfo]:
    """Parse a user agent string with caching.

    Args:
        ua_string: Raw User-Agent header value.

    Returns:
        Tuple of (device, browser, os) with "Unknown" for undeterminable fields.
    """
    ua = parse(ua_string)

    if ua.is_tablet:
        device_type = DeviceType.TABLET
    elif ua.is_mobile:
        device_type = DeviceType.MOBILE
    else:
        device_type = DeviceType.DESKTOP

    device = DeviceInfo(
        type=device_type,
        model=_known(ua.device.model),
        vendor=_known(ua.device.brand),
    )
    browser = BrowserInfo(name=_known(ua.browser.family), version=_known(ua.browser.version_string))
    os_info = OSInfo(name=_known(ua.os.family), version=_known(ua.os.version_string))
    return device, browser, os_info


class GeoLocator:
    """IP geolocation against a local MaxMind city database."""

    __slots__ = ("_reader", "_db_path")

    def __init__(self, db_path: str | None = None):
        self._reader = None
        self._db_path = db_path

        if not db_path:
            logger.warning("No GeoIP database configured, locations will be Unknown")
            return
        if not os.path.exists(db_path):
            logger.warning(f"GeoIP database not found: {db_path}")
            return

        try:
            self._reader = geoip2.database.Reader(db_path)
            logger.info(f"Loaded GeoIP database from {db_path}")
        except (OSError, ValueError, RuntimeError) as e:
            logger.error(f"Failed to load GeoIP database {db_path}: {e}")

    @property
    def available(self) -> bool:
        return self._reader is not None

    def lookup(self, ip_address: str | None) -> LocationInfo:
        """Look up the location of an address.

        Args:
            ip_address: Normalized IPv4 or IPv6 address string.

        Returns:
            LocationInfo, with "Unknown" for every field on failure.
        """
        if self._reader is None or not ip_address:
            return LocationInfo()

        try:
            response = self._reader.city(ip_address)
        except geoip2.errors.AddressNotFoundError:
            logger.debug(f"IP not found in GeoIP database: {ip_address}")
            return LocationInfo()
        except (ValueError, RuntimeError, geoip2.errors.GeoIP2Error) as e:
            logger.warning(f"GeoIP lookup failed for {ip_address}: {e}")
            return LocationInfo()

        return LocationInfo(
            country=response.country.iso_code or UNKNOWN,
            region=response.subdivisions.most_specific.iso_code or UNKNOWN,
            city=response.city.name or UNKNOWN,
            timezone=response.location.time_zone or UNKNOWN,
        )

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None


def enrich(
    user_agent: str | None,
    client_ip: str | None,
    referer: str | None,
    geo: GeoLocator | None = None,
) -> VisitDetails:
    ip = normalize_ip(client_ip)

    device, browser, os_info = DeviceInfo(), BrowserInfo(), OSInfo()
    if user_agent:
        try:
            device, browser, os_info = parse_user_agent(user_agent)
        except Exception as e:
            logger.warning(f"User agent parsing failed for {user_agent!r}: {e}")

    location = geo.lookup(ip) if geo is not None else LocationInfo()

    return VisitDetails(
        client_ip=ip,
        user_agent=user_agent,
        referer=referer or DIRECT_REFERER,
        device=device,
        browser=browser,
        os=os_info,
        location=location,
    )
