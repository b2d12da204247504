from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "ZapFlow"
    environment: str = Field("development", description="Environment name")
    secret_key: str = Field("dev-secret", description="JWT secret key")
    access_token_expire_minutes: int = 30
    refresh_token_expire_minutes: int = 60 * 24 * 7
    database_url: str = Field(
        "postgresql+psycopg2://zapflow:zapflow@db:5432/zapflow",
        description="Database URL",
    )
    log_level: str = Field("INFO")
    messaging_backend: str = Field(
        "meta",
        description="Messaging backend to use (meta or mock)",
        alias="MESSAGING_BACKEND",
    )
    meta_graph_api_url: str = Field("https://graph.facebook.com/v19.0", alias="META_GRAPH_API_URL")
    meta_verify_token: str = Field("", alias="META_VERIFY_TOKEN")
    automation_default_timeout_seconds: int = Field(10, alias="AUTOMATION_DEFAULT_TIMEOUT_SECONDS")
    template_cache_ttl_seconds: int = Field(300, alias="TEMPLATE_CACHE_TTL_SECONDS")
    template_cache_max_entries: int = Field(512, alias="TEMPLATE_CACHE_MAX_ENTRIES")
    default_country_code: str = Field("55", alias="DEFAULT_COUNTRY_CODE")
    node_log_retention_days: int = Field(30, alias="NODE_LOG_RETENTION_DAYS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True


def get_settings() -> Settings:
    return Settings()
