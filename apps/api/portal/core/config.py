"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str

    # Session Token (access tokens issued by the auth provider, supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_AUDIENCE: str = ""  # e.g. "authenticated"; empty disables the audience check

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173"

    # Object storage
    # edge: serverless functions proxying the media host
    # s3: S3-compatible bucket
    # local: filesystem (dev/tests)
    STORAGE_BACKEND: str = "local"
    STORAGE_ROOT: str = "needy-portal"
    STORAGE_UPLOAD_MARKER: str = "upload"
    MAX_UPLOAD_SIZE_BYTES: int = 10 * 1024 * 1024  # 10 MB

    # Edge functions
    STORAGE_EDGE_BASE_URL: str = ""  # e.g. https://<project>.supabase.co/functions/v1
    STORAGE_EDGE_TIMEOUT_SECONDS: float = 30.0

    # Local storage
    LOCAL_STORAGE_PATH: str = "/tmp/needy-portal-media"
    LOCAL_PUBLIC_BASE_URL: str = "http://localhost:8000/media"

    # S3
    S3_BUCKET: str = "needy-portal-media"
    S3_REGION: str = ""
    S3_ENDPOINT_URL: str = ""
    S3_PUBLIC_BASE_URL: str = ""
    S3_URL_STYLE: str = "path"  # path | virtual
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""

    # Case folder deletion (bulk deletes are eventually consistent)
    STORAGE_DELETE_PROPAGATION_SECONDS: float = 1.0
    STORAGE_DELETE_BACKOFF_SECONDS: float = 3.0  # 3s, 6s, 12s
    STORAGE_DELETE_MAX_RETRIES: int = 3

    # Donor notification emails (external service, empty disables)
    EMAIL_SERVICE_URL: str = ""

    # Error tracking
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute per IP, 0 disables)
    RATE_LIMIT_API: int = 60
    RATE_LIMIT_UPLOAD: int = 20  # multipart mutations
    RATE_LIMIT_STORAGE_URI: str = "memory://"  # e.g. redis://localhost:6379/0

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def cases_folder(self) -> str:
        return f"{self.STORAGE_ROOT}/cases"

    @property
    def profiles_folder(self) -> str:
        return f"{self.STORAGE_ROOT}/profiles"


settings = Settings()
