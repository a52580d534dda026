"""NOTAM data gateways: the async interface the dashboard consumes, plus adapters."""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests

from notamdash.config import Config
from notamdash.errors import NotFoundError, TransportError, classify_http_status
from notamdash.models.filters import FilterState, apply_filters
from notamdash.models.notam import NotamRecord, records_from_api

logger = logging.getLogger(__name__)


class NotamGateway(ABC):
    """
    Abstract base class for NOTAM data sources.

    All operations are coroutines and may complete in any order.
    """

    @abstractmethod
    async def fetch_list(self, filters: FilterState, credential: Optional[str]) -> List[NotamRecord]:
        """Fetch records matching the structured filters."""

    @abstractmethod
    async def search(self, term: str, credential: Optional[str]) -> List[NotamRecord]:
        """Free-text search; the result replaces the working set."""

    @abstractmethod
    async def fetch_detail(self, notam_id: str, credential: Optional[str]) -> NotamRecord:
        """Fetch the full record for one id. Raises NotFoundError if unknown."""


class HttpNotamGateway(NotamGateway):
    """
    Gateway for a JSON NOTAM API using Bearer token authentication.

    Endpoints, relative to NOTAM_API_URL:
        GET /               list, filter params in the query string
        GET /search?q=term  search
        GET /{id}           detail
    """

    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config = Config()
        self.base_url = (base_url or self.config.NOTAM_API_URL).rstrip('/')
        self.session = session or requests.Session()
        self.clock = clock

    def _build_headers(self, credential: Optional[str]) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        return headers

    def _parse_response(self, response_data: Any) -> List[Dict]:
        """Parse a list payload, which may come bare or wrapped."""
        if isinstance(response_data, list):
            return response_data
        elif isinstance(response_data, dict):
            return response_data.get('items', []) or response_data.get('data', []) or response_data.get('notams', [])
        raise TransportError(f"Unexpected response format: {type(response_data).__name__}")

    def _get(self, url: str, credential: Optional[str], params: Optional[Dict] = None,
             not_found_ok: bool = False) -> Any:
        """
        Blocking GET with error classification.

        Raises:
            AuthError, NotFoundError, TransportError
        """
        try:
            response = self.session.get(
                url, params=params, headers=self._build_headers(credential),
                timeout=self.config.REQUEST_TIMEOUT_SECONDS
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            error_cls = classify_http_status(status, not_found_ok=not_found_ok)
            logger.error(f"HTTP {status} from {url}")
            raise error_cls(f"HTTP {status} from NOTAM API", status=status) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Error requesting {url}: {e}")
            raise TransportError(str(e)) from e
        except ValueError as e:
            # Body was not JSON
            logger.error(f"Invalid JSON from {url}: {e}")
            raise TransportError("Invalid JSON from NOTAM API") from e

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def fetch_list(self, filters: FilterState, credential: Optional[str]) -> List[NotamRecord]:
        data = await self._run(self._get, self.base_url, credential, params=filters.to_params())
        records = records_from_api(self._parse_response(data))
        # Re-apply locally so the semantics hold even if upstream ignores params
        now = self.clock() if self.clock else None
        filtered = apply_filters(records, filters, now)
        logger.info(f"Fetched {len(filtered)} NOTAM(s) ({len(records)} before filtering)")
        return filtered

    async def search(self, term: str, credential: Optional[str]) -> List[NotamRecord]:
        data = await self._run(self._get, f"{self.base_url}/search", credential, params={'q': term.strip()})
        records = records_from_api(self._parse_response(data))
        logger.info(f"Search '{term.strip()}' returned {len(records)} NOTAM(s)")
        return records

    async def fetch_detail(self, notam_id: str, credential: Optional[str]) -> NotamRecord:
        url = f"{self.base_url}/{quote(notam_id, safe='')}"
        data = await self._run(self._get, url, credential, not_found_ok=True)
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected detail format for {notam_id}")
        try:
            return NotamRecord.from_api_dict(data)
        except ValueError as e:
            raise TransportError(f"Malformed detail for {notam_id}: {e}") from e


class InMemoryNotamGateway(NotamGateway):
    """
    Gateway over a fixed record set, e.g. loaded from NOTAM_DATA_FILE.

    Credentials are ignored. Detail payloads, when given, are merged over
    the list record the way an upstream detail endpoint would extend it.
    """

    def __init__(self, records: List[NotamRecord], details: Optional[Dict[str, Dict]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self._records = list(records)
        self._details = details or {}
        self.clock = clock

    @classmethod
    def from_json_file(cls, path: str, **kwargs) -> 'InMemoryNotamGateway':
        """
        Load records from a JSON file: a list, or {"notams": [...], "details": {id: {...}}}.
        """
        with open(Path(path), 'r', encoding='utf-8') as f:
            payload = json.load(f)
        if isinstance(payload, list):
            items, details = payload, {}
        else:
            items, details = payload.get('notams', []), payload.get('details', {})
        records = records_from_api(items)
        logger.info(f"Loaded {len(records)} NOTAM(s) from {path}")
        return cls(records, details=details, **kwargs)

    @staticmethod
    def _copy(record: NotamRecord) -> NotamRecord:
        # Fresh objects per query, like a remote source would return
        return replace(record)

    async def fetch_list(self, filters: FilterState, credential: Optional[str]) -> List[NotamRecord]:
        now = self.clock() if self.clock else None
        return [self._copy(r) for r in apply_filters(self._records, filters, now)]

    async def search(self, term: str, credential: Optional[str]) -> List[NotamRecord]:
        needle = term.strip().lower()
        return [
            self._copy(r) for r in self._records
            if needle in r.notam_id.lower() or needle in r.location.lower() or needle in r.description.lower()
        ]

    async def fetch_detail(self, notam_id: str, credential: Optional[str]) -> NotamRecord:
        for record in self._records:
            if record.notam_id == notam_id:
                extra = self._details.get(notam_id)
                if not extra:
                    return self._copy(record)
                try:
                    detail = NotamRecord.from_api_dict({**record.to_dict(), **extra})
                except ValueError as e:
                    raise TransportError(f"Malformed detail for {notam_id}: {e}") from e
                if detail.geometry is None:
                    detail.geometry = record.geometry
                return detail
        raise NotFoundError(f"NOTAM with ID {notam_id} not found", status=404)


def get_notam_gateway() -> NotamGateway:
    """
    Factory function to instantiate the configured gateway.

    Returns:
        HttpNotamGateway when NOTAM_API_URL is set, else InMemoryNotamGateway
        over NOTAM_DATA_FILE
    """
    config = Config()

    if config.NOTAM_API_URL:
        logger.info(f"Using HTTP NOTAM gateway at {config.NOTAM_API_URL}")
        return HttpNotamGateway()
    if config.NOTAM_DATA_FILE:
        logger.info(f"Using file NOTAM gateway ({config.NOTAM_DATA_FILE})")
        return InMemoryNotamGateway.from_json_file(config.NOTAM_DATA_FILE)
    raise ValueError("No NOTAM source configured (set NOTAM_API_URL or NOTAM_DATA_FILE)")
