from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "SmartLight Hub"
    host: str = "0.0.0.0"
    port: int = 5000

    # Storage
    sqlite_path: str = Field(default="smartlight.db")
    store_timeout_seconds: float = 5.0
    # SQLite gives up on a locked database before the engine deadline
    sqlite_busy_timeout_seconds: float = 2.0
    # extra wait for a device save that outlives store_timeout_seconds
    commit_grace_seconds: float = 5.0

    # Defaults for lazily created devices
    default_device_name: str = "SmartLight"
    default_dark_threshold: float = 400   # LDR units
    default_auto_off_delay: float = 60    # seconds
    default_ldr_value: float = 512
    default_temperature: float = 25.0
    default_humidity: float = 60.0

    # A push after this much silence counts as the device coming back online
    offline_after_seconds: int = 120

    # Queries
    logs_default_limit: int = 50
    logs_max_limit: int = 1000
    history_default_hours: int = 24
    history_max_hours: int = 24 * 30

    # Fanout
    delivery_timeout_seconds: float = 2.0

    # Device key check on telemetry pushes
    require_device_key: bool = False
    allowed_devices: str = "esp32-001"    # comma separated

    cors_origins: str = "http://localhost:3000"  # comma separated

    log_level: str = "INFO"
    log_file: str = "smartlight.log"      # empty disables the file handler

    def busy_timeout(self) -> float:
        return min(self.sqlite_busy_timeout_seconds, self.store_timeout_seconds / 2)

    def allowed_device_ids(self) -> set[str]:
        return {d.strip() for d in self.allowed_devices.split(",") if d.strip()}

    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
