from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from straitfeed.utils.geo import BoundingBox


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    LOG_LEVEL: str = "INFO"
    # aisstream.io real-time AIS WebSocket
    AISSTREAM_API_KEY: str | None = None
    AISSTREAM_HOST: str = "stream.aisstream.io"
    AISSTREAM_PORT: int = 443
    AISSTREAM_PATH: str = "/v0/stream"
    # Dover Strait bounding box (decimal degrees)
    BBOX_LAT_MIN: float = 50.7
    BBOX_LAT_MAX: float = 51.4
    BBOX_LON_MIN: float = 0.8
    BBOX_LON_MAX: float = 2.3
    # Snapshot file shared with the read side
    CACHE_FILE: str = "data/ships_cache.json"
    # Read side treats an older snapshot as "no live data" (seconds)
    CACHE_MAX_AGE: int = 120
    # Vessels without a report for this long are evicted (seconds)
    SHIP_STALE_AFTER: int = 300
    COLLECTOR_LOG_FILE: str = "data/collector.log"
    # Socket timeouts (seconds); READ_TIMEOUT must stay sub-second
    CONNECT_TIMEOUT: float = 10.0
    READ_TIMEOUT: float = 0.5
    # Collector cadences (seconds)
    FLUSH_INTERVAL: float = 2.0
    STATS_INTERVAL: float = 30.0
    # Reconnect backoff floor and ceiling (seconds)
    RECONNECT_DELAY_MIN: float = 5.0
    RECONNECT_DELAY_MAX: float = 60.0

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        # BoundingBox raises ValueError for an inverted or out-of-range box
        self.bounding_box
        for name in ("CONNECT_TIMEOUT", "READ_TIMEOUT", "FLUSH_INTERVAL",
                     "STATS_INTERVAL", "RECONNECT_DELAY_MIN", "SHIP_STALE_AFTER"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.RECONNECT_DELAY_MAX < self.RECONNECT_DELAY_MIN:
            raise ValueError("RECONNECT_DELAY_MAX must be >= RECONNECT_DELAY_MIN")
        return self

    @property
    def bounding_box(self) -> BoundingBox:
        return BoundingBox(
            lat_min=self.BBOX_LAT_MIN,
            lon_min=self.BBOX_LON_MIN,
            lat_max=self.BBOX_LAT_MAX,
            lon_max=self.BBOX_LON_MAX,
        )
