# warehouse_hub/settings.py
"""
Warehouse Hub settings.

Everything comes from the environment (or `.env`); names match the variables
used by the deployment scripts.
"""
from __future__ import annotations
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices


class Settings(BaseSettings):
    # =========================================================================
    # File Storage (logs, uploaded reports)
    # =========================================================================
    WAREHOUSE_DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "warehouse-data"),
        validation_alias=AliasChoices("WAREHOUSE_DATA_ROOT", "wh_data_root"),
    )

    # =========================================================================
    # Database
    # =========================================================================
    # Full URL wins over the DB_* parts (sqlite+aiosqlite in tests)
    DATABASE_URL: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")
    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="warehouse_hub", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    # =========================================================================
    # MoySklad
    # =========================================================================
    MOYSKLAD_BASE_URL: str = Field(
        default="https://api.moysklad.ru/api/remap/1.2",
        validation_alias="MOYSKLAD_BASE_URL",
    )
    MOYSKLAD_TOKEN: Optional[str] = Field(default=None, validation_alias="MOYSKLAD_TOKEN")
    MOYSKLAD_LOGIN: Optional[str] = Field(default=None, validation_alias="MOYSKLAD_LOGIN")
    MOYSKLAD_PASSWORD: Optional[str] = Field(default=None, validation_alias="MOYSKLAD_PASSWORD")
    MOYSKLAD_STORE_ID: Optional[str] = Field(default=None, validation_alias="MOYSKLAD_STORE_ID")
    # Exact store name, trailing dot included
    MOYSKLAD_STORE_NAME: str = Field(default="Склад хранения.", validation_alias="MOYSKLAD_STORE_NAME")
    MOYSKLAD_STOCK_MODE: str = Field(default="all", validation_alias="MOYSKLAD_STOCK_MODE")
    MOYSKLAD_SLOT_CHUNK_SIZE: int = Field(default=100, ge=1, validation_alias="MOYSKLAD_SLOT_CHUNK_SIZE")
    MOYSKLAD_SYNC_CHUNK_SIZE: int = Field(default=200, ge=1, validation_alias="MOYSKLAD_SYNC_CHUNK_SIZE")
    MOYSKLAD_TIMEOUT: float = Field(default=60.0, validation_alias="MOYSKLAD_TIMEOUT")

    # Slot directory cache (slot_id -> name)
    SLOT_CACHE_TTL_SECONDS: float = Field(default=600.0, ge=0, validation_alias="SLOT_CACHE_TTL_SECONDS")

    # =========================================================================
    # HTTP
    # =========================================================================
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:5173", "http://127.0.0.1:5173"],
        validation_alias="CORS_ORIGINS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
