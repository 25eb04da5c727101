import logging
import xml.etree.ElementTree as ET

import httpx

from ttc_speed_cache.models import RoutesLookup, VehicleObservation

logger = logging.getLogger(__name__)


class FeedError(RuntimeError):
    """The feed answered, but not with usable data."""


# ── Parsers ──────────────────────────────────────────────────────────


def _parse_body(xml_text: str | bytes) -> ET.Element:
    try:
        body = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise FeedError(f"Feed returned malformed XML: {e}") from e

    # The feed reports request errors in-band with HTTP 200.
    error = body.find("Error")
    if error is not None:
        message = (error.text or "").strip() or "unspecified error"
        raise FeedError(f"Feed error: {message}")
    return body


def parse_vehicle_locations(xml_text: str | bytes) -> list[VehicleObservation]:
    """Parse a ``vehicleLocations`` payload.

    Vehicles without a route tag are silently skipped — one bad element
    shouldn't break the entire cycle. The speed is passed through untouched;
    validation happens during aggregation.
    """
    body = _parse_body(xml_text)
    observations = []
    for vehicle in body.findall("vehicle"):
        route_tag = vehicle.get("routeTag")
        if not route_tag:
            continue
        observations.append(
            VehicleObservation(route_tag=route_tag, raw_speed=vehicle.get("speedKmHr"))
        )
    return observations


def parse_route_list(xml_text: str | bytes) -> RoutesLookup:
    """Parse a ``routeList`` payload into ``{tag: title}``."""
    body = _parse_body(xml_text)
    titles: RoutesLookup = {}
    for route in body.findall("route"):
        tag = route.get("tag")
        title = route.get("title")
        if not tag or not title:
            continue
        titles[tag] = title
    return titles


# ── Fetching ─────────────────────────────────────────────────────────


class FeedClient:
    """Reads the public XML feed. Every call is one bounded GET."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        vehicle_locations_url: str,
        route_list_url: str,
        timeout: float = 10,
    ):
        self._http = http
        self.vehicle_locations_url = vehicle_locations_url
        self.route_list_url = route_list_url
        self.timeout = timeout

    async def _get_xml(self, url: str) -> bytes:
        resp = await self._http.get(url, timeout=self.timeout)
        resp.raise_for_status()
        return resp.content

    async def fetch_vehicle_observations(self) -> list[VehicleObservation]:
        xml_text = await self._get_xml(self.vehicle_locations_url)
        observations = parse_vehicle_locations(xml_text)
        logger.debug("Feed returned %d vehicles", len(observations))
        return observations

    async def fetch_route_titles(self) -> RoutesLookup:
        xml_text = await self._get_xml(self.route_list_url)
        titles = parse_route_list(xml_text)
        logger.debug("Feed returned %d routes", len(titles))
        return titles
