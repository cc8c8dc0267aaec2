import os
from dataclasses import dataclass, field
from typing import List, Optional


class ConfigError(RuntimeError):
    pass


DEV_JWT_SECRET = "dev-secret-change-me"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ["true", "1", "t", "yes"]


@dataclass
class Settings:
    database_url: str = "sqlite:///./labbook.db"
    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    access_token_ttl_minutes: int = 60
    otp_ttl_minutes: int = 5
    otp_length: int = 6
    otp_max_attempts: int = 5
    booking_min_minutes: int = 30
    booking_max_hours: int = 8
    default_lab_name: str = "Main Lab"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: Optional[str] = None
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        debug = _env_bool("DEBUG")
        secret = os.getenv("JWT_SECRET")
        if not secret:
            if not debug:
                raise ConfigError("JWT_SECRET must be set (or DEBUG=1 for a development secret)")
            secret = DEV_JWT_SECRET

        # Render and Heroku hand out postgres:// URLs, SQLAlchemy wants postgresql://
        database_url = os.getenv("DATABASE_URL", "sqlite:///./labbook.db")
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)

        origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
        return cls(
            database_url=database_url,
            jwt_secret=secret,
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            access_token_ttl_minutes=int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", 60)),
            otp_ttl_minutes=int(os.getenv("OTP_TTL_MINUTES", 5)),
            otp_length=int(os.getenv("OTP_LENGTH", 6)),
            otp_max_attempts=int(os.getenv("OTP_MAX_ATTEMPTS", 5)),
            booking_min_minutes=int(os.getenv("BOOKING_MIN_MINUTES", 30)),
            booking_max_hours=int(os.getenv("BOOKING_MAX_HOURS", 8)),
            default_lab_name=os.getenv("DEFAULT_LAB_NAME", "Main Lab"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", 587)),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_from=os.getenv("SMTP_FROM") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            debug=debug,
        )
