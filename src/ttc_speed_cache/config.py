import os

_DEFAULT_FEED_BASE_URL = "https://webservices.umoiq.com/service/publicXMLFeed"


class Settings:
    def __init__(self):
        self.feed_base_url: str = os.environ.get("FEED_BASE_URL", _DEFAULT_FEED_BASE_URL)
        self.feed_agency: str = os.environ.get("FEED_AGENCY", "ttc")
        self.http_timeout: float = float(os.environ.get("HTTP_TIMEOUT", "10"))
        self.collect_interval: int = int(os.environ.get("COLLECT_INTERVAL", "60"))  # seconds
        self.route_titles_ttl: int = int(os.environ.get("ROUTE_TITLES_TTL", "3600"))  # seconds
        self.default_duration_days: int = int(
            os.environ.get("DEFAULT_DURATION_DAYS", "30")
        )
        self.cache_dir: str = os.environ.get("CACHE_DIR", "./speed-cache")
        self.storage_backend: str = os.environ.get("STORAGE_BACKEND", "s3").lower()
        self.s3_bucket: str = os.environ.get("S3_BUCKET", "")
        self.s3_prefix: str = os.environ.get("S3_PREFIX", "")
        self.cron_secret: str | None = os.environ.get("CRON_SECRET") or None
        self.qstash_current_signing_key: str | None = (
            os.environ.get("QSTASH_CURRENT_SIGNING_KEY") or None
        )
        self.qstash_next_signing_key: str | None = (
            os.environ.get("QSTASH_NEXT_SIGNING_KEY") or None
        )
        self.collect_endpoint_url: str | None = (
            os.environ.get("COLLECT_ENDPOINT_URL") or None
        )
        self.log_level: str = os.environ.get("LOG_LEVEL", "INFO")

    @property
    def vehicle_locations_url(self) -> str:
        return f"{self.feed_base_url}?command=vehicleLocations&a={self.feed_agency}"

    @property
    def route_list_url(self) -> str:
        return f"{self.feed_base_url}?command=routeList&a={self.feed_agency}"


settings = Settings()
