import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


def _read_secret_file(env_name: str) -> str | None:
    """Return the stripped contents of the file named by ``<env_name>``, if any."""
    path = os.getenv(env_name)
    try:
        if path and os.path.isfile(path):
            with open(path, "r", encoding="utf-8") as f:
                return f.read().strip() or None
    except OSError:
        return None
    return None


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./data/billpay.db"
    APP_ENV: str = os.getenv("APP_ENV", os.getenv("ENV", "dev"))  # dev | test | prod

    # Identity provider. A shared JWT secret wins; otherwise tokens are
    # checked remotely against the Supabase auth endpoint.
    AUTH_JWT_SECRET: str | None = None
    AUTH_AUDIENCE: str = "authenticated"
    SUPABASE_URL: str | None = None
    SUPABASE_ANON_KEY: str | None = None
    AUTH_TIMEOUT_S: float = 5.0

    # "pg_cron" | "memory"; empty picks by database dialect
    SCHEDULER_BACKEND: str = ""
    RECONCILE_ENABLED: bool = False
    RECONCILE_INTERVAL_S: int = 900

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    CORS_ALLOW_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def is_prod(self) -> bool:
        return self.APP_ENV.lower() == "prod"

    @property
    def scheduler_backend(self) -> str:
        backend = (self.SCHEDULER_BACKEND or "").strip().lower()
        if backend:
            return backend
        return "memory" if self.is_sqlite else "pg_cron"

    @property
    def allow_origins(self) -> list[str]:
        return [
            o.strip().strip('"').strip("'")
            for o in self.CORS_ALLOW_ORIGINS.split(",")
            if o.strip().strip('"').strip("'")
        ]


def load_settings(**overrides) -> Settings:
    """Build settings from env/.env, applying ``*_FILE`` secret fallbacks.

    Raises ``RuntimeError`` when a SQLite URL is configured for prod.
    """
    s = Settings(**overrides)
    if "DATABASE_URL" not in overrides and not os.getenv("DATABASE_URL"):
        url = _read_secret_file("DATABASE_URL_FILE")
        if url:
            s.DATABASE_URL = url
    if not s.AUTH_JWT_SECRET:
        s.AUTH_JWT_SECRET = _read_secret_file("AUTH_JWT_SECRET_FILE")
    if s.is_prod and s.is_sqlite:
        raise RuntimeError("sqlite DATABASE_URL in prod; refusing to start")
    return s


settings = load_settings()
