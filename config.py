"""
Parity - Identity Configuration Drift Reporting
"""
from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application Info
    APP_NAME: str = "Parity"
    APP_VERSION: str = "1.3.2"
    DEBUG: bool = False

    # Export layout
    # Each export folder holds one sub-folder per domain. A missing sub-folder
    # means the domain was not exported, which is not an error.
    SYNC_CONFIG_DIR: str = "SyncConfig"
    SERVICE_CONFIG_DIR: str = "ServiceConfig"
    EXPORT_FILE_PATTERN: str = "*.xml"

    # Comparison
    # Number of leading version components that must agree before two
    # exports of the same entity type are compared (2 = major.minor).
    SCHEMA_VERSION_PRECISION: int = 2

    # Service objects carry bookkeeping attributes that always differ
    # between environments.
    IGNORED_SERVICE_ATTRIBUTES: list[str] = [
        "ObjectID",
        "ObjectType",
        "CreatedTime",
        "Creator",
        "DeletedTime",
        "ResourceTime",
        "MVObjectID",
        "ComputedActor",
        "ComputedMember",
        "DetectedRulesList",
        "ExpectedRulesList",
    ]

    # Reports
    REPORTS_DIR: Path = Path("reports")
    REPORT_TITLE: str = "FIM/MIM Configuration"
    PDF_MAX_CHANGES: int = 500  # Attribute changes listed per PDF before truncating

    class Config:
        env_prefix = "PARITY_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
