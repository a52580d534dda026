"""Configuration module for the NOTAM dashboard."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration."""

    # Logging level
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Software Version
    VERSION = os.getenv('VERSION', 'v0.0.0')

    # NOTAM API
    NOTAM_API_URL = os.getenv('NOTAM_API_URL', '')
    NOTAM_API_KEY = os.getenv('NOTAM_API_KEY', '')

    # Token refresh endpoint (optional)
    NOTAM_AUTH_URL = os.getenv('NOTAM_AUTH_URL', '')
    NOTAM_REFRESH_TOKEN = os.getenv('NOTAM_REFRESH_TOKEN', '')

    # Local JSON file of NOTAM records, used when no API is configured
    NOTAM_DATA_FILE = os.getenv('NOTAM_DATA_FILE', '')

    # Weather API (GET {WEATHER_API_URL}/{icao})
    WEATHER_API_URL = os.getenv('WEATHER_API_URL', '/api/weather')
    WEATHER_REFRESH_SECONDS = int(os.getenv('WEATHER_REFRESH_SECONDS', '300'))

    REQUEST_TIMEOUT_SECONDS = float(os.getenv('REQUEST_TIMEOUT_SECONDS', '30'))

    # Global minima, overridable per flight / per airport
    GLOBAL_MIN_CEILING_FT = int(os.getenv('GLOBAL_MIN_CEILING_FT', '800'))
    GLOBAL_MIN_VISIBILITY_SM = float(os.getenv('GLOBAL_MIN_VISIBILITY_SM', '1.0'))

    # Map rendering
    MAP_TILES = os.getenv('MAP_TILES', 'OpenStreetMap')
    MAP_CLUSTER_MARKERS = os.getenv('MAP_CLUSTER_MARKERS', 'false').lower() in ('1', 'true', 'yes')
    MAP_OUTPUT_PATH = os.getenv('MAP_OUTPUT_PATH', 'notam_map.html')
    HIGHLIGHT_RADIUS_NM = float(os.getenv('HIGHLIGHT_RADIUS_NM', '5'))
    HIGHLIGHT_ZOOM = int(os.getenv('HIGHLIGHT_ZOOM', '10'))

    @classmethod
    def validate(cls):
        """Validate required configuration."""
        if not cls.NOTAM_API_URL and not cls.NOTAM_DATA_FILE:
            raise ValueError("NOTAM_API_URL or NOTAM_DATA_FILE configuration is required")
        if cls.GLOBAL_MIN_CEILING_FT < 0 or cls.GLOBAL_MIN_VISIBILITY_SM < 0:
            raise ValueError("Global minima must not be negative")
        if cls.HIGHLIGHT_RADIUS_NM <= 0:
            raise ValueError("HIGHLIGHT_RADIUS_NM must be positive")
        return True
