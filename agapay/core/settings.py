"""
Core settings and environment variables for AgapayAlert.
Uses pydantic-settings for type-safe environment variable loading.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Create a .env file in the root directory to configure these.
    """

    # Application
    APP_NAME: str = "AgapayAlert API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - Frontend URLs allowed to access this API
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8081"

    # Firebase (Firestore, Storage, Cloud Messaging, Auth)
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None  # Path to service account JSON
    FIREBASE_STORAGE_BUCKET: Optional[str] = None

    # Geocoding
    # - GEOCODING_PROVIDER: "nominatim" (default, no API key) or "google"
    # - GOOGLE_MAPS_API_KEY: optional; only used when provider is "google"
    GEOCODING_PROVIDER: str = "nominatim"
    GOOGLE_MAPS_API_KEY: Optional[str] = None
    NOMINATIM_USER_AGENT: str = "AgapayAlert/1.0"
    GEOCODING_COUNTRY_CODE: str = "PH"
    GEOCODING_TIMEOUT_SECONDS: float = 3.0

    # Station assignment
    STATION_SEARCH_RADIUS_KM: float = 5.0
    ROAD_DISTANCE_FACTOR: float = 1.3

    # Notification channels
    CHANNEL_TIMEOUT_SECONDS: float = 5.0
    PUSH_TTL_SECONDS: int = 86400
    PUSH_SOUND: str = "alert"

    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    SMTP_FROM_EMAIL: str = "alerts@agapayalert.ph"

    FACEBOOK_PAGE_ID: Optional[str] = None
    FACEBOOK_PAGE_ACCESS_TOKEN: Optional[str] = None
    FACEBOOK_GRAPH_API_URL: str = "https://graph.facebook.com/v22.0"

    # Scheduled publications are swept on this interval, so a deferred
    # broadcast can go out up to one interval late.
    PUBLISH_SWEEP_ENABLED: bool = True
    PUBLISH_SWEEP_INTERVAL_SECONDS: int = 3600

    # Hotspot analytics
    HOTSPOT_TOP_N: int = 10
    HOTSPOT_STABLE_SLOPE: float = 0.1

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"


# Global settings instance
settings = Settings()
