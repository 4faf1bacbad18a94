"""
HTTP telemetry sources.

Fetches fleet state from the carrier APIs over httpx with tenacity retries
on transport errors and rate limiting. COLTRACK answers a basic-auth POST
with JSON; FAGOR is a SOAP service returning XML.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fleetd.alerts.models import ApiSource, FetchResult, FetchStatus
from .base import TelemetrySource
from .normalizer import normalize_records, parse_fagor_xml


class TelemetryFetchError(Exception):
    """Raised when a carrier answers with an unusable response."""
    pass


class HttpTelemetrySource(TelemetrySource):
    """
    JSON telemetry endpoint.

    Subclasses override ``_build_request`` and ``_extract_records`` for
    carrier specific envelopes.
    """

    def __init__(self,
                 url: str,
                 source: str,
                 username: Optional[str] = None,
                 password: Optional[str] = None,
                 timeout_seconds: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the source.

        Args:
            url: Endpoint URL
            source: Carrier label stamped on each snapshot
            username: Basic-auth user, if the endpoint needs one
            password: Basic-auth password
            timeout_seconds: Request timeout
            client: Pre-built client (tests inject a mock transport here)
        """
        if not url:
            raise ValueError(f"{source} telemetry URL is required")
        self.url = url
        self.name = str(source).upper()
        self.username = username
        self.password = password
        self.timeout_seconds = timeout_seconds
        self.client = client
        self.logger = logging.getLogger(__name__)

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            auth = (self.username, self.password) if self.username else None
            self.client = httpx.AsyncClient(auth=auth, timeout=self.timeout_seconds)
        return self.client

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    def _build_request(self) -> Dict[str, Any]:
        return {'method': 'GET'}

    def _extract_records(self, response: httpx.Response) -> List[Dict[str, Any]]:
        data = response.json()
        if isinstance(data, dict):
            data = data.get('data', [])
        if not isinstance(data, list):
            raise TelemetryFetchError(f"Unexpected {self.name} payload")
        return data

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TransportError, httpx.HTTPStatusError)),
        reraise=True
    )
    async def _request(self) -> httpx.Response:
        """Issue the request with retry logic."""
        options = self._build_request()
        response = await self._get_client().request(options.pop('method'), self.url, **options)

        if response.status_code == 429:
            self.logger.warning(f"{self.name} rate limited, backing off...")
            await asyncio.sleep(2)
            response.raise_for_status()
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    async def fetch(self) -> FetchResult:
        received_at = datetime.now(timezone.utc)
        try:
            response = await self._request()
            if response.status_code != 200:
                raise TelemetryFetchError(f"{self.name} API returned {response.status_code}")
            records = self._extract_records(response)
        except (httpx.HTTPError, TelemetryFetchError, ValueError) as e:
            self.logger.error(f"Error fetching {self.name} telemetry: {e}")
            return FetchResult(snapshots=[], status=FetchStatus.ERROR,
                               errors=[f"{self.name}: {e}"])

        snapshots = normalize_records(records, self.name, received_at)
        self.logger.info(f"Fetched {len(snapshots)} vehicles from {self.name}")
        return FetchResult(snapshots=snapshots, status=FetchStatus.OK)


class ColtrackSource(HttpTelemetrySource):
    """COLTRACK GPS API: basic-auth POST, JSON envelope ``{status, message: {data}}``."""

    def __init__(self, url: str, username: Optional[str] = None,
                 password: Optional[str] = None, **kwargs):
        super().__init__(url, ApiSource.COLTRACK.value, username, password, **kwargs)

    def _build_request(self) -> Dict[str, Any]:
        return {'method': 'POST'}

    def _extract_records(self, response: httpx.Response) -> List[Dict[str, Any]]:
        data = response.json()
        if not isinstance(data, dict):
            raise TelemetryFetchError("Invalid response structure from COLTRACK")
        message = data.get('message')
        if data.get('status') != 'OK' or not isinstance(message, dict) or 'data' not in message:
            raise TelemetryFetchError("Invalid response structure from COLTRACK")
        return message['data'] or []


FAGOR_SOAP_ACTION = 'http://212.8.96.37/webservices/EstadoActualFlota'

FAGOR_ENVELOPE = """<?xml version="1.0" encoding="utf-8"?>
<soap:Envelope xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
               xmlns:xsd="http://www.w3.org/2001/XMLSchema"
               xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">
  <soap:Header>
    <AuthHeader xmlns="http://212.8.96.37/webservices/">
      <Username>{username}</Username>
      <Password>{password}</Password>
    </AuthHeader>
  </soap:Header>
  <soap:Body>
    <EstadoActualFlota xmlns="http://212.8.96.37/webservices/">
      <empresa>{company}</empresa>
    </EstadoActualFlota>
  </soap:Body>
</soap:Envelope>"""


class FagorSource(HttpTelemetrySource):
    """FAGOR (FlotasNet) fleet-state SOAP service."""

    def __init__(self, url: str, username: Optional[str] = None,
                 password: Optional[str] = None, company: str = "", **kwargs):
        super().__init__(url, ApiSource.FAGOR.value, **kwargs)
        self.soap_username = username or ""
        self.soap_password = password or ""
        self.company = company

    def _build_request(self) -> Dict[str, Any]:
        body = FAGOR_ENVELOPE.format(username=self.soap_username,
                                     password=self.soap_password,
                                     company=self.company)
        return {
            'method': 'POST',
            'content': body.encode('utf-8'),
            'headers': {
                'Content-Type': 'text/xml; charset=utf-8',
                'SOAPAction': FAGOR_SOAP_ACTION,
            },
        }

    def _extract_records(self, response: httpx.Response) -> List[Dict[str, Any]]:
        records = parse_fagor_xml(response.text)
        if not records:
            raise TelemetryFetchError("No vehicles found in FAGOR response")
        return records
