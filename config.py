"""
Configuration management using Pydantic Settings with safe access wrapper
"""
from pydantic_settings import BaseSettings
from typing import Optional, Any


class Settings(BaseSettings):
    # Application settings
    app_name: str = "LUIS Trainer"
    version: str = "1.0.0"
    debug: bool = False
    environment: str = "production"

    # LUIS provisioning (authoring) surface
    luis_base_url: str = "https://westus.api.cognitive.microsoft.com/luis/v1.0/prog/apps"
    luis_subscription_key: Optional[str] = None
    luis_application_id: Optional[str] = None
    luis_requests_per_second: float = 5

    # LUIS prediction (query) surface
    luis_query_url: str = "https://westus.api.cognitive.microsoft.com/luis/v2.0/apps"
    luis_query_requests_per_second: float = 10

    # Bulk reads and writes
    luis_page_size: int = 100
    luis_page_fan_out: int = 15
    luis_batch_size: int = 100

    # Retry policy for throttled requests
    luis_max_retries: int = 5
    luis_retry_base_delay: float = 1.0
    luis_retry_factor: float = 2.0
    luis_request_timeout: int = 30

    # Training
    luis_training_poll_interval: float = 2.0

    # Logging settings
    log_level: str = "INFO"
    log_file_max_bytes: int = 10485760
    log_file_backup_count: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"   # allow unknown env vars without error

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._validated = False
        self.validate_settings()

    def validate_settings(self):
        """Validate critical settings on startup"""
        if self._validated:
            return

        errors = []

        if self.environment not in ["development", "testing", "production"]:
            errors.append(f"Invalid environment: {self.environment}")

        if self.luis_requests_per_second < 0:
            errors.append("luis_requests_per_second cannot be negative")
        if self.luis_query_requests_per_second < 0:
            errors.append("luis_query_requests_per_second cannot be negative")

        # The examples endpoint rejects bigger batches
        if not 1 <= self.luis_batch_size <= 100:
            errors.append(f"Invalid batch size: {self.luis_batch_size}. Must be between 1 and 100")

        if self.luis_page_size < 1:
            errors.append(f"Invalid page size: {self.luis_page_size}")
        if self.luis_page_fan_out < 1:
            errors.append(f"Invalid page fan-out: {self.luis_page_fan_out}")
        if self.luis_max_retries < 0:
            errors.append("luis_max_retries cannot be negative")

        if errors:
            raise ValueError(f"Configuration errors: {'; '.join(errors)}")

        self._validated = True


class SafeSettings:
    """Safe wrapper for settings with fallback defaults"""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._defaults = {
            "luis_requests_per_second": 5,
            "luis_query_requests_per_second": 10,
            "luis_page_size": 100,
            "luis_page_fan_out": 15,
            "luis_batch_size": 100,
            "luis_max_retries": 5,
            "luis_retry_base_delay": 1.0,
            "luis_retry_factor": 2.0,
            "luis_request_timeout": 30,
            "luis_training_poll_interval": 2.0,
            "log_level": "INFO",
            "environment": "production",
            "debug": False,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Safely get setting value with fallback"""
        value = getattr(self._settings, key, None)
        if value is None:
            value = self._defaults.get(key, default)
        return value

    def __getattr__(self, key: str) -> Any:
        """Proxy attribute access with safety"""
        return self.get(key)

    @property
    def raw(self) -> Settings:
        """Get raw settings object"""
        return self._settings


# Initialize settings with safety wrapper
_raw_settings = Settings()
settings = SafeSettings(_raw_settings)
