"""
Agility Configuration

Environment-based settings with fail-fast validation of the identity token
configuration. Values come from the environment or a local .env file.
"""
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "AgilityDB"

    # Identity tokens
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: str = ""
    jwt_issuer: Optional[str] = None

    # HTTP
    cors_origins: List[str] = ["http://localhost:4200"]
    port: int = 8000

    debug: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def validate_not_placeholder(cls, v: str) -> str:
        """Treat placeholder secrets as unset."""
        if v and "your-" in v.lower():
            return ""
        return v

    def validate_token_settings(self) -> None:
        """Fail fast when tokens cannot be verified."""
        if not self.jwt_secret:
            raise ValueError(
                "JWT_SECRET environment variable is required to verify identity tokens. "
                "Please set it in your .env file or environment."
            )
        if not self.jwt_audience:
            raise ValueError(
                "JWT_AUDIENCE environment variable is required to verify identity tokens. "
                "Please set it in your .env file or environment."
            )


# Global settings instance
settings = Settings()
