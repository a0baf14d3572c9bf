#!/usr/bin/env python3
"""
Exam Proctoring Ledger - Configuration
Settings read from PROCTOR_* environment variables or a .env file
"""

from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration settings"""

    # XML-RPC server
    host: str = "0.0.0.0"
    port: int = 8010
    server_url: str = "http://127.0.0.1:8010"

    # set_end policy
    end_policy: Literal["guarded", "permissive"] = "guarded"

    # Audit trail of state transitions (unset = logger only)
    event_log: Optional[str] = None
    log_file: str = "proctor_ledger.log"

    # Flask gateway
    web_host: str = "0.0.0.0"
    web_port: int = 5001

    class Config:
        env_prefix = "PROCTOR_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()

HOST = settings.host
PORT = settings.port
SERVER_URL = settings.server_url
END_POLICY = settings.end_policy
EVENT_LOG_PATH = settings.event_log or None
LOG_FILE = settings.log_file
WEB_HOST = settings.web_host
WEB_PORT = settings.web_port
