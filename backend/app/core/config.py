from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECTION_ROLE_SLUGS: dict[str, list[str]] = {
    "landing": ["landing", "inicio", "home"],
    "releases": ["releases", "lancamentos"],
    "live": ["live", "sessions", "sessoes"],
    "bio": ["bio", "sobre", "quem-somos"],
    "contact": ["contact", "contato"],
    "sessions": ["main", "sessions", "sessoes"],
}


class Settings(BaseSettings):
    app_name: str = "Site Publisher"
    app_env: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "cms"
    postgres_user: str = "cms"
    postgres_password: str = "cms"

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_socket_timeout_seconds: float = 5.0

    database_url: str | None = None
    redis_url: str | None = None
    frontend_origin: str = "http://localhost:3000"
    additional_frontend_origins: str = ""
    worker_heartbeat_key: str = "worker:heartbeat"
    worker_heartbeat_ttl_seconds: int = 45

    jwt_secret_key: str = "change_this_in_production"
    jwt_algorithm: str = "HS256"
    jwt_publisher_token_expire_minutes: int = 60

    supabase_url: str | None = None
    supabase_service_role_key: str | None = None
    supabase_bucket: str = "prerender"
    storage_timeout_seconds: float = 30.0

    prerender_media_base_url: str = ""
    section_role_slugs: dict[str, list[str]] = DEFAULT_SECTION_ROLE_SLUGS

    publish_key_prefix: str = "publish"
    publish_lock_ttl_seconds: int = 60
    publish_lock_fail_open: bool = False
    publish_latest_version_ttl_seconds: int = 86400 * 7
    publish_max_concurrent_uploads: int = 4
    publish_task_max_retries: int = 3
    publish_task_retry_delay_seconds: int = 30

    @property
    def cors_allowed_origins(self) -> list[str]:
        origins = [self.frontend_origin.strip()]
        if self.additional_frontend_origins.strip():
            origins.extend(
                [value.strip() for value in self.additional_frontend_origins.split(",") if value.strip()]
            )
        unique: list[str] = []
        for origin in origins:
            if origin and origin not in unique:
                unique.append(origin)
        return unique

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cache_redis_url(self) -> str:
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    @property
    def storage_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


settings = Settings()
