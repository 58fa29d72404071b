from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _default_env_file() -> str:
    # Same .env the dashboard uses, so the API base is configured once.
    repo_root = Path(__file__).resolve().parents[2]
    return str(repo_root / ".env")


def derive_ws_url(api_base_url: str) -> str:
    """Convierte la URL base REST en la URL del broker WebSocket.

    ``https://host/api`` -> ``wss://host/ws``
    ``http://host:8080`` -> ``ws://host:8080/ws``
    """
    url = api_base_url.strip().rstrip("/")
    url = re.sub(r"^http", "ws", url)
    if re.search(r"/api$", url):
        return url[: -len("api")] + "ws"
    return url + "/ws"


@dataclass(frozen=True)
class Settings:
    api_base_url: str
    ws_url: str
    auth_token: Optional[str]

    request_timeout_seconds: float
    log_level: str


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("VITALS_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    api_base_url = os.getenv("VITALS_API_BASE_URL", "http://localhost:8080/api")

    # Explicit broker URL wins over the derived one (e.g. relay on another host).
    ws_url = os.getenv("VITALS_WS_URL") or derive_ws_url(api_base_url)

    auth_token = os.getenv("VITALS_AUTH_TOKEN") or None
    request_timeout_seconds = float(os.getenv("VITALS_REQUEST_TIMEOUT", "5.0"))
    log_level = os.getenv("VITALS_LOG_LEVEL", "INFO").upper()

    return Settings(
        api_base_url=api_base_url,
        ws_url=ws_url,
        auth_token=auth_token,
        request_timeout_seconds=request_timeout_seconds,
        log_level=log_level,
    )
