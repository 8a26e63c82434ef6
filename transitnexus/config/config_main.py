from dotenv import load_dotenv
import os

load_dotenv()

class DBConfig():
    host: str = os.getenv("POSTGRES_HOST", "localhost")
    port: int = int(os.getenv("POSTGRES_PORT", 5432))
    user: str = os.getenv("POSTGRES_USER", "sa")
    password: str = os.getenv("POSTGRES_PASSWORD", "password")
    database: str = os.getenv("POSTGRES_DB", "transitnexus")
    url_override: str = os.getenv("NEXUS_DATABASE_URL", "")

    @property
    def url(self) -> str:
        if self.url_override:
            return self.url_override
        return (
            f"postgresql+psycopg2://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

db_config = DBConfig()

class CacheConfig():
    """Cached query results."""
    namespace: str = os.getenv("NEXUS_CACHE_NAMESPACE", "cachedresults")
    default_ttl_hours: int = int(os.getenv("NEXUS_CACHE_TTL_HOURS", "24"))
    journey_ttl_seconds: int = int(os.getenv("NEXUS_JOURNEY_CACHE_TTL_SECONDS", "300"))

cache_config = CacheConfig()

class QueueConfig():
    events_queue: str = os.getenv("NEXUS_EVENTS_QUEUE", "events-queue")
    realtime_queue: str = os.getenv("NEXUS_REALTIME_QUEUE", "realtime-queue")
    number_consumers: int = int(os.getenv("NEXUS_QUEUE_CONSUMERS", "5"))
    batch_size: int = int(os.getenv("NEXUS_QUEUE_BATCH_SIZE", "20"))
    poll_timeout: float = float(os.getenv("NEXUS_QUEUE_POLL_TIMEOUT", "2"))
    redelivery_after_seconds: int = int(os.getenv("NEXUS_QUEUE_REDELIVERY_AFTER", "600"))

queue_config = QueueConfig()

class RealtimeConfig():
    """Freshness window for overlaying live journeys on the timetable."""
    active_cutoff_minutes: int = int(os.getenv("NEXUS_REALTIME_CUTOFF_MINUTES", "10"))

realtime_config = RealtimeConfig()

class ImportConfig():
    registry_path: str = os.getenv("NEXUS_DATASET_REGISTRY", "")
    dedupe_include_availability: bool = os.getenv("NEXUS_DEDUPE_INCLUDE_AVAILABILITY", "true").lower() == "true"
    request_timeout: int = int(os.getenv("NEXUS_REQUEST_TIMEOUT", "300"))
    max_retries: int = int(os.getenv("NEXUS_REQUEST_MAX_RETRIES", "3"))

import_config = ImportConfig()

class CredentialsConfig():
    bods_api_key: str = os.getenv("NEXUS_BODS_API_KEY", "")
    nationalrail_username: str = os.getenv("NEXUS_NATIONALRAIL_USERNAME", "")
    nationalrail_password: str = os.getenv("NEXUS_NATIONALRAIL_PASSWORD", "")
    nationalrail_auth_url: str = os.getenv(
        "NEXUS_NATIONALRAIL_AUTH_URL", "https://opendata.nationalrail.co.uk/authenticate"
    )
    networkrail_username: str = os.getenv("NEXUS_NETWORKRAIL_USERNAME", "")
    networkrail_password: str = os.getenv("NEXUS_NETWORKRAIL_PASSWORD", "")

    def get(self, name: str) -> str:
        return getattr(self, name, "") or ""

credentials_config = CredentialsConfig()
