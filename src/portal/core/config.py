import logging
import os
from pathlib import Path
from typing import ClassVar, Optional, Union

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, ConfigDict, Field, validator
from pydantic_settings import BaseSettings

log_format = logging.Formatter("%(asctime)s : %(levelname)s - %(message)s")

# root logger
root_logger = logging.getLogger()
root_logger.setLevel(logging.INFO)

# standard stream handler
stream_handler = logging.StreamHandler()
stream_handler.setFormatter(log_format)
root_logger.addHandler(stream_handler)

logger = logging.getLogger(__name__)

# Load .env file from docker/server directory unless overridden
env_path = Path(os.getenv("PORTAL_ENV_FILE", "./docker/server/.env"))
if env_path.exists():
    load_dotenv(dotenv_path=env_path)
    logger.info(f"Loaded environment from {env_path}")
else:
    logger.info(f"No .env file at {env_path}, using process environment")


class Settings(BaseSettings):
    API_V1_STR: str = "/api/v1"

    # Platform API (the donation platform backend this portal is a client of)
    PLATFORM_API_URL: str = Field(
        default="http://localhost:3000/api/v1",
        description="Base URL of the platform REST API",
    )
    PLATFORM_API_TIMEOUT: float = Field(
        default=50.0,
        description="Seconds before an upstream request is abandoned",
    )

    # Checkout redirect targets
    PUBLIC_ORIGIN: AnyHttpUrl = "http://localhost:5173"
    CHECKOUT_SUCCESS_PATH: str = "/membership/success?session_id={CHECKOUT_SESSION_ID}"
    CHECKOUT_CANCEL_PATH: str = "/membership"

    # Catalog staleness, the plan list rarely changes
    PLANS_CACHE_SECONDS: int = 600

    # Sessions and access policies
    # secret the platform signs access tokens with; without it sessions are
    # keyed per token and carry no roles
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    TOKEN_EXPIRY_BUFFER_SECONDS: int = 30
    SESSION_IDLE_SECONDS: int = 86400
    MAX_SESSIONS: int = 10000
    STASHED_SELECTION_SECONDS: int = 3600
    MAX_STASHED_SELECTIONS: int = 10000
    POLICIES_PATH: str = "policies.yaml"

    # Server Configuration
    SERVER_HOST: AnyHttpUrl = "https://localhost"
    SERVER_PORT: int = 8001
    BACKEND_CORS_ORIGINS: list[str] = ["http://localhost:5173"]

    @validator("BACKEND_CORS_ORIGINS", pre=True)
    def assemble_cors_origins(cls, v: Union[str, list[str]]) -> list[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, list):
            return v
        elif isinstance(v, str):
            return [v]
        raise ValueError(v)

    @validator("PLATFORM_API_URL")
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    PROJECT_NAME: str = "giv-portal"

    Config: ClassVar[ConfigDict] = ConfigDict(arbitrary_types_allowed=True)

    @property
    def checkout_success_url(self) -> str:
        return f"{str(self.PUBLIC_ORIGIN).rstrip('/')}{self.CHECKOUT_SUCCESS_PATH}"

    @property
    def checkout_cancel_url(self) -> str:
        return f"{str(self.PUBLIC_ORIGIN).rstrip('/')}{self.CHECKOUT_CANCEL_PATH}"


settings = Settings()

# Validate required settings
if not settings.PLATFORM_API_URL:
    raise ValueError("PLATFORM_API_URL environment variable is required")
