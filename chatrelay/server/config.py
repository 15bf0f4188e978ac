from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server settings, read from CHATRELAY_* environment variables or .env.

    Attributes:
        host (str): Interface the HTTP server binds to
        port (int): TCP port of the HTTP server
        data_path (str): JSON document holding users, groups and messages
        bcrypt_rounds (int): Work factor used when hashing new passwords
        strict_membership (bool): Push an explicit error event back to a
            connection whose join request was denied
        heartbeat (float): WebSocket ping interval in seconds
    """
    model_config = SettingsConfigDict(env_prefix="CHATRELAY_", env_file=".env", extra="ignore")

    host: str = "127.0.0.1"
    port: int = 8080
    data_path: str = "chatrelay/data/db.json"
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    strict_membership: bool = False
    heartbeat: float = 20.0
