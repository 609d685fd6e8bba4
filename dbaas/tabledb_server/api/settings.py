"""
Configuration for the TableDB HTTP gateway.

Uses pydantic-settings for environment variable loading. Storage and
integrity settings come from ServerConfig; this only covers serving.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="Gateway bind host")
    port: int = Field(default=8080, description="Gateway bind port")

    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    default_actor: str = Field(
        default="gateway:anonymous", description="Actor recorded when X-Actor is absent"
    )

    model_config = {"env_prefix": "TABLEDB_"}
