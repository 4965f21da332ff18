"""Configuration handling for the K2 proxy."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent.parent / "config.yaml"

DEFAULT_UPSTREAM_URL = "https://www.k2think.ai/api/guest/chat/completions"
DEFAULT_MODEL = "MBZUAI-IFM/K2-Think"
DEFAULT_MODEL_OWNER = "talkai"
DEFAULT_PORT = 3000

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Content-Type": "application/json",
    "Accept": "text/event-stream",
    "Pragma": "no-cache",
    "Origin": "https://www.k2think.ai",
    "Sec-Fetch-Site": "same-origin",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Dest": "empty",
    "Referer": "https://www.k2think.ai/guest",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8,en-GB;q=0.7,en-US;q=0.6,zh-TW;q=0.5",
}


class ProxyConfig(BaseModel):
    """Per-process settings handed explicitly to the app and the drivers."""

    upstream_url: str = DEFAULT_UPSTREAM_URL
    upstream_headers: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADERS))
    client_api_keys: List[str] = Field(default_factory=list)
    model_id: str = DEFAULT_MODEL
    model_owner: str = DEFAULT_MODEL_OWNER
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    timeout: Optional[float] = None


def parse_api_keys(keys: Optional[str]) -> List[str]:
    """Split a comma-separated key list, dropping blanks."""
    if not keys:
        return []
    return [key.strip() for key in keys.split(",") if key.strip()]


def _read_config_file(config_path: Path) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(config_path.read_text()) or {}
        logger.info(f"Successfully loaded configuration from {config_path.name}")
    except FileNotFoundError:
        logger.info(f"No {config_path.name} found, using default settings")
        return {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading {config_path.name}: {str(e)}")
        return {}
    if not isinstance(raw, dict):
        logger.error(f"Ignoring {config_path.name}: expected a mapping at the top level")
        return {}
    return raw


def load_config(config_path: Optional[Path] = None) -> ProxyConfig:
    """
    Build the proxy configuration.

    Values come from config.yaml when present, then environment variables
    (a .env file is loaded first) override them:

    - CLIENT_API_KEY: comma-separated client keys; empty disables the check
    - K2THINK_API_URL: upstream chat completions URL
    - HOST / PORT: listen address for the uvicorn server
    - UPSTREAM_TIMEOUT: seconds; unset means no timeout
    """
    load_dotenv()
    raw = _read_config_file(config_path or CONFIG_PATH)

    upstream = raw.get("upstream") or {}
    server = raw.get("server") or {}
    models = raw.get("models") or {}
    auth = raw.get("auth") or {}

    headers = dict(DEFAULT_HEADERS)
    headers.update(upstream.get("headers") or {})

    settings: Dict[str, Any] = {
        "upstream_url": upstream.get("url") or DEFAULT_UPSTREAM_URL,
        "upstream_headers": headers,
        "client_api_keys": list(auth.get("client_api_keys") or []),
        "model_id": models.get("id") or DEFAULT_MODEL,
        "model_owner": models.get("owned_by") or DEFAULT_MODEL_OWNER,
        "host": server.get("host") or "0.0.0.0",
        "port": server.get("port") or DEFAULT_PORT,
        "timeout": upstream.get("timeout"),
    }

    if os.environ.get("CLIENT_API_KEY") is not None:
        settings["client_api_keys"] = parse_api_keys(os.environ["CLIENT_API_KEY"])
    if os.environ.get("K2THINK_API_URL"):
        settings["upstream_url"] = os.environ["K2THINK_API_URL"]
    if os.environ.get("HOST"):
        settings["host"] = os.environ["HOST"]
    if os.environ.get("PORT"):
        settings["port"] = int(os.environ["PORT"])
    if os.environ.get("UPSTREAM_TIMEOUT"):
        settings["timeout"] = float(os.environ["UPSTREAM_TIMEOUT"])

    if not settings["client_api_keys"]:
        logger.warning("No client API keys configured, authentication is disabled")

    return ProxyConfig(**settings)
