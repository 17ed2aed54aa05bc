"""
Runtime configuration for the Portfolio API.

Values come from environment variables (or a local .env file). Field names map
to upper-case variables, e.g. ``jwt_secret`` <- ``JWT_SECRET``.
"""

from functools import lru_cache
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Portfolio API"
    environment: str = "development"
    port: int = 5100

    # Database
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "portfolio"

    # Auth
    jwt_secret: str = "super-secret-key-change"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    # Distinguished identities
    admin_id: str = "admin@test.com"
    customer_id: str = "cust@test.com"
    admin_password: str = "Admin@123"
    customer_password: str = "Cust@123"

    # source ownerId -> ownerIds that receive a projection of its updates
    sync_targets: Dict[str, List[str]] = Field(default_factory=dict)

    # Uploads
    uploads_dir: str = "uploads"
    max_upload_bytes: int = 5 * 1024 * 1024

    # Behaviour
    write_through: bool = True
    seed_on_startup: bool = True
    subscriber_queue_size: int = 100
    cors_origins: List[str] = ["*"]

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    def projection_targets(self) -> Dict[str, List[str]]:
        if self.sync_targets:
            return self.sync_targets
        return {self.admin_id: [self.customer_id]}


@lru_cache
def get_settings() -> Settings:
    return Settings()
