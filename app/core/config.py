from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ALLOWED_ENV_FIELD_NAMES = frozenset(
    {
        "app_name",
        "app_env",
        "app_version",
        "api_prefix",
        "allowed_origins",
        "app_base_url",
        "data_store",
        "mongodb_uri",
        "mongodb_db_name",
        "mongodb_users_collection",
        "mongodb_transcripts_collection",
        "mongodb_teams_collection",
        "mongodb_team_memberships_collection",
        "mongodb_team_rules_collection",
        "mongodb_team_shares_collection",
        "mongodb_user_shares_collection",
        "mongodb_connect_timeout_ms",
        "session_secret_key",
        "download_token_ttl_minutes",
        "team_email_domains",
        "transcripts_default_page_size",
        "transcripts_max_page_size",
    },
)


class Settings(BaseSettings):
    app_name: str = "Transcript Access API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    app_base_url: str = "http://localhost:8000"
    data_store: str = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "transcript_access"
    mongodb_users_collection: str = "users"
    mongodb_transcripts_collection: str = "transcripts"
    mongodb_teams_collection: str = "teams"
    mongodb_team_memberships_collection: str = "team_memberships"
    mongodb_team_rules_collection: str = "team_transcript_rules"
    mongodb_team_shares_collection: str = "team_transcript_shares"
    mongodb_user_shares_collection: str = "user_transcript_shares"
    mongodb_connect_timeout_ms: int = 2000
    session_secret_key: str = "change-me-in-production"
    download_token_ttl_minutes: int = 5
    team_email_domains: Annotated[list[str], NoDecode] = ["example.com"]
    transcripts_default_page_size: int = 20
    transcripts_max_page_size: int = 100

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def _filter_allowed_env_fields(source):
            return {
                field_name: raw_value
                for field_name, raw_value in source().items()
                if field_name in ALLOWED_ENV_FIELD_NAMES
            }

        return (
            init_settings,
            lambda: _filter_allowed_env_fields(env_settings),
            lambda: _filter_allowed_env_fields(dotenv_settings),
            file_secret_settings,
        )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("team_email_domains", mode="before")
    @classmethod
    def parse_team_email_domains(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            value = value.split(",")
        return [
            domain.strip().lower().lstrip("@")
            for domain in value
            if domain and domain.strip()
        ]

    @field_validator("data_store", mode="before")
    @classmethod
    def normalize_data_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("download_token_ttl_minutes", mode="before")
    @classmethod
    def normalize_download_token_ttl(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 5
        return parsed_value

    @field_validator("transcripts_default_page_size", mode="before")
    @classmethod
    def normalize_default_page_size(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 20
        return parsed_value

    @field_validator("transcripts_max_page_size", mode="before")
    @classmethod
    def normalize_max_page_size(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 100
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
