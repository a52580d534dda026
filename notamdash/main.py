"""Main application module."""
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from notamdash.config import Config
from notamdash.credentials import get_credential_provider
from notamdash.dashboard import NotamDashboard
from notamdash.flights import Flight, FlightBoard
from notamdash.map_backend import FoliumMapBackend
from notamdash.map_surface import MapSurfaceController
from notamdash.models.filters import AltitudeBand, FilterState
from notamdash.notam_client import get_notam_gateway
from notamdash.reports import report_minima, report_records, report_statistics
from notamdash.weather import WeatherClient, WeatherMonitor

# Configure logging from environment
log_level = Config.LOG_LEVEL
logging.basicConfig(
    level=getattr(logging, log_level.upper(), logging.INFO),
    format="%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)-20s | %(filename)-15s | %(funcName)-15s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='NOTAM map dashboard')
    parser.add_argument('--region', default='all',
                        help='all, north-america, europe, asia, africa, oceania, south-america')
    parser.add_argument('--category', default='all',
                        help='all, obstacle, airspace, procedure, navaid, airport')
    parser.add_argument('--date-range', default='current', help='current, today, week, month')
    parser.add_argument('--min-altitude', type=int, metavar='FT')
    parser.add_argument('--max-altitude', type=int, metavar='FT')
    parser.add_argument('--search', help='Free-text search (more than 2 characters)')
    parser.add_argument('--select', metavar='NOTAM_ID', help='Open the detail view for a NOTAM')
    parser.add_argument('--output', default=Config.MAP_OUTPUT_PATH, help='Map HTML output path')
    parser.add_argument('--weather', nargs='*', default=[], metavar='ICAO',
                        help='Airports to check against minima')
    parser.add_argument('--flights', metavar='FILE', help='JSON file of flights to check against minima')
    parser.add_argument('--watch', action='store_true', help='Keep refreshing every WEATHER_REFRESH_SECONDS')
    return parser


class DashboardApp:
    """Runs the NOTAM dashboard from the command line."""

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self.config = Config()
        self.config.validate()

        filters = FilterState().with_changes(
            region=args.region,
            category=args.category,
            date_range=args.date_range,
            altitude=AltitudeBand(args.min_altitude, args.max_altitude),
        )

        self.backend = FoliumMapBackend()
        self.map_controller = MapSurfaceController(self.backend)
        self.dashboard = NotamDashboard(
            get_notam_gateway(), get_credential_provider(), self.map_controller, filters=filters
        )
        self.weather = WeatherMonitor(WeatherClient(), icaos=args.weather) if args.weather else None
        self.flights = self._load_flights(args.flights) if args.flights else None

        logger.info("=" * 80)
        logger.info("NOTAM dashboard initialized")
        logger.info(f"Software Version: {self.config.VERSION}")
        logger.info(f"Filters: {filters.to_params()}")
        logger.info(f"Map output: {args.output}")
        logger.info(f"Global minima: {self.config.GLOBAL_MIN_CEILING_FT}ft / {self.config.GLOBAL_MIN_VISIBILITY_SM}SM")
        logger.info("=" * 80)

    @staticmethod
    def _load_flights(path: str) -> FlightBoard:
        with open(path, 'r', encoding='utf-8') as f:
            payload = json.load(f)
        flights = []
        for item in payload:
            try:
                flights.append(Flight.from_dict(item))
            except ValueError as e:
                logger.warning(f"Skipping flight: {e}")
        logger.info(f"Loaded {len(flights)} flight(s) from {path}")
        return FlightBoard(flights)

    async def run_cycle(self) -> None:
        """Apply search/selection, print reports and write the map."""
        dashboard = self.dashboard

        if self.args.search:
            await dashboard.set_search(self.args.search)
        if self.args.select:
            await dashboard.select(self.args.select)

        if dashboard.error:
            logger.error(dashboard.error)

        report_statistics(dashboard.stats)
        report_records(dashboard.records, dashboard.selection)

        if dashboard.detail is not None:
            print(dashboard.detail.summary())
            print()
        if dashboard.detail_error:
            logger.warning(dashboard.detail_error)

        if dashboard.map_handle is not None and dashboard.map_handle.is_ready:
            self.backend.save(dashboard.map_handle.surface, self.args.output)

        if self.weather is not None:
            await self.weather.refresh()
            report_minima({icao: self.weather.evaluate(icao) for icao in self.weather.icaos},
                          self.weather.minima)

        if self.flights is not None:
            report_minima({cs: self.flights.evaluate(f) for cs, f in self.flights.flights.items()},
                          self.flights.minima)

    async def run_once(self) -> None:
        await self.dashboard.start()
        try:
            await self.run_cycle()
        finally:
            await self.dashboard.close()

    async def run_continuous(self) -> None:
        """Refresh NOTAMs and weather periodically."""
        interval = self.config.WEATHER_REFRESH_SECONDS
        logger.info(f"Starting continuous mode, refresh every {interval}s")
        await self.dashboard.start()
        try:
            while True:
                await self.run_cycle()
                logger.info(f"Next update in {interval}s...")
                await asyncio.sleep(interval)
                await self.dashboard.refresh()
        finally:
            await self.dashboard.close()


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        app = DashboardApp(args)
    except Exception as e:
        logger.error(f"Failed to start NOTAM dashboard: {e}", exc_info=True)
        sys.exit(1)

    try:
        if args.watch:
            asyncio.run(app.run_continuous())
        else:
            asyncio.run(app.run_once())
    except KeyboardInterrupt:
        logger.info("Dashboard stopped by user")


if __name__ == '__main__':
    main()
