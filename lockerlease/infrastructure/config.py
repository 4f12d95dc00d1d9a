from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite+pysqlite:///./lockerlease.db"
    provisioning_path: Path = Path(__file__).resolve().parents[1] / "lockers.yaml"

    lease_ttl_seconds: int = 300
    token_bytes: int = 16
    sweep_interval_seconds: float = 30.0

    command_bus_backend: str = "memory"
    mqtt_broker_url: str = "mqtt://localhost:1883"
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_topic_prefix: str = "smartlocker"
    mqtt_qos: int = 1

    event_queue_size: int = 100
    sse_ping_seconds: int = 15
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="LOCKERLEASE_", env_file=".env", extra="ignore")


settings = Settings()
