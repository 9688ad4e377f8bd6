"""Configuration settings for the Profile service.

This module exposes a *singleton* `settings` instance that encapsulates
all environment-driven configuration required by the service.
"""

from __future__ import annotations

from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load variables from a local .env file *before* instantiating `Settings`.
load_dotenv()


class Settings(BaseSettings):
    """Application configuration pulled from the environment.

    Attributes:
        mongo_db_username: MongoDB user; credentials are omitted when empty.
        mongo_db_pwd: Password of *mongo_db_username*.
        mongo_db_host: Host running the MongoDB server.
        mongo_db_port: TCP port of the MongoDB server.
        mongo_db_name: Database holding the profile collection.
        mongo_auth_source: Database the credentials are defined in.
        profile_collection: Collection storing profile documents.
        server_selection_timeout_ms: Timeout of a single connection attempt.
        socket_timeout_ms: Idle socket timeout.
        reconnect_delay_seconds: Fixed pause between connection attempts.
        host: Host/interface to bind the HTTP server to.
        port: TCP port exposed by the HTTP server.
        log_level: Root logging level.
    """

    mongo_db_username: str = ""
    mongo_db_pwd: str = ""
    mongo_db_host: str = "localhost"
    mongo_db_port: int = 27017
    mongo_db_name: str = "user-account"
    mongo_auth_source: str = "admin"
    profile_collection: str = "users"

    server_selection_timeout_ms: int = 5000
    socket_timeout_ms: int = 45000
    reconnect_delay_seconds: float = 5.0

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def mongodb_uri(self) -> str:
        """Connection string assembled from the individual settings."""
        credentials = ""
        if self.mongo_db_username:
            credentials = (
                f"{quote_plus(self.mongo_db_username)}:"
                f"{quote_plus(self.mongo_db_pwd)}@"
            )
        return (
            f"mongodb://{credentials}{self.mongo_db_host}:{self.mongo_db_port}"
            f"/{self.mongo_db_name}?authSource={self.mongo_auth_source}"
        )


# Single shared settings instance
settings = Settings()
