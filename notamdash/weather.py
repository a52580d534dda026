"""Airport weather monitor with per-airport minima."""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from notamdash.config import Config
from notamdash.minima import MinimaRegistry, MinimaResult

logger = logging.getLogger(__name__)


class WeatherClient:
    """Fetches current conditions as JSON from {WEATHER_API_URL}/{icao}."""

    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None):
        self.config = Config()
        self.base_url = (base_url or self.config.WEATHER_API_URL).rstrip('/')
        self.session = session or requests.Session()

    def fetch_sync(self, icao: str) -> Dict[str, Any]:
        """
        Fetch weather for one airport.

        Raises:
            requests.exceptions.RequestException: on network/HTTP errors
        """
        response = self.session.get(
            f"{self.base_url}/{icao}",
            headers={"Accept": "application/json"},
            timeout=self.config.REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected weather format for {icao}: {type(data).__name__}")
        return data

    async def fetch(self, icao: str) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.fetch_sync, icao)


class WeatherMonitor:
    """
    A watch list of airports, each with its latest report and minima.
    """

    def __init__(self, client: WeatherClient, icaos: Optional[List[str]] = None,
                 minima: Optional[MinimaRegistry] = None):
        self.client = client
        self.minima = minima or MinimaRegistry()
        self.icaos: List[str] = []
        self.reports: Dict[str, Dict[str, Any]] = {}
        self.errors: Dict[str, str] = {}
        for icao in icaos or []:
            self.add_icao(icao)

    def add_icao(self, icao: str) -> bool:
        icao = icao.strip().upper()
        if not icao or icao in self.icaos:
            return False
        self.icaos.append(icao)
        return True

    def remove_icao(self, icao: str) -> bool:
        icao = icao.strip().upper()
        if icao not in self.icaos:
            return False
        self.icaos.remove(icao)
        self.reports.pop(icao, None)
        self.errors.pop(icao, None)
        # Per-airport minima go with the airport
        self.minima.reset(icao)
        return True

    async def refresh_one(self, icao: str) -> bool:
        try:
            report = await self.client.fetch(icao)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Failed to fetch weather for {icao}: {e}")
            if icao in self.icaos:
                self.errors[icao] = f"Failed to fetch weather for {icao}"
            return False
        # Airport may have been removed while the request was in flight
        if icao not in self.icaos:
            return False
        self.reports[icao] = report
        self.errors.pop(icao, None)
        return True

    async def refresh(self) -> int:
        """Fetch all airports concurrently. Returns how many succeeded."""
        results = await asyncio.gather(*(self.refresh_one(icao) for icao in list(self.icaos)))
        ok = sum(1 for r in results if r)
        logger.info(f"Weather refreshed for {ok}/{len(results)} airport(s)")
        return ok

    def evaluate(self, icao: str) -> MinimaResult:
        icao = icao.upper()
        return self.minima.evaluate(icao, self.reports.get(icao, {}))
