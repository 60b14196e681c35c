# app/config/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional, Set


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # App Info
    app_name: str = "Accountability System API"
    version: str = "1.0.0"
    environment: str = "development"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 10000
    cors_origins: List[str] = ["*"]

    # Storage: memory | mongodb | sql
    storage_backend: str = "memory"
    db_retry_delay_seconds: float = 5.0

    # MongoDB
    mongodb_uri: Optional[str] = None
    mongodb_database: str = "accountability"
    mongodb_collection: str = "expenses"
    mongodb_server_selection_timeout_ms: int = 10000
    mongodb_socket_timeout_ms: int = 45000

    # SQL (SQLAlchemy URL)
    database_url: Optional[str] = None

    # Required-field profile for submissions: simple | report
    expense_form: str = "simple"

    # Receipts: local | cloudinary
    file_storage: str = "local"
    upload_dir: str = "uploads"
    max_receipt_size: int = 10 * 1024 * 1024
    allowed_receipt_formats: Set[str] = {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "application/pdf",
    }

    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    cloudinary_folder: str = "accountability"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def required_fields(self) -> List[str]:
        """Fields a submission must carry, per the configured expense form"""
        if self.expense_form == "report":
            return ["organization", "event"]
        return ["description", "amount"]

    @property
    def masked_mongodb_uri(self) -> str:
        """Connection string with the password hidden, for logs"""
        return mask_uri(self.mongodb_uri)

    @property
    def masked_database_url(self) -> str:
        return mask_uri(self.database_url)


def mask_uri(uri: Optional[str]) -> str:
    if not uri:
        return "<not set>"
    scheme, sep, rest = uri.partition("://")
    if not sep or "@" not in rest:
        return uri
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:****@{host}"


settings = Settings()
