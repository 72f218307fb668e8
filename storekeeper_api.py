"""CLI entry-point to launch the storekeeper local maintenance API."""
from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import uvicorn

from api import __version__ as API_VERSION
from api.server import APIServerConfig, create_app
from coordinator import build_coordinator
from core.logging_utils import configure_logging, redact_secret
from core.paths import resolve_working_dir
from core.settings import load_settings

LOGGER = logging.getLogger("storekeeper.api")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8757
DEFAULT_CORS = ["http://localhost", "http://127.0.0.1"]


@dataclass(slots=True)
class APISettings:
    host: str
    port: int
    api_key: Optional[str]
    cors: List[str]
    lan_only: bool


def _resolve_bind_host(candidate: Optional[str]) -> str:
    host = (candidate or DEFAULT_HOST).strip() or DEFAULT_HOST
    norm = host.lower()
    if norm.startswith("::ffff:"):
        norm = norm.split("::ffff:")[-1]
    if norm in {"localhost", "::1"}:
        return "127.0.0.1"
    if norm.startswith("127."):
        return norm
    raise ValueError(
        f"Refusing to bind API server to non-loopback host '{candidate}'. Storekeeper only serves on localhost."
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Start the local storekeeper maintenance API.")
    parser.add_argument("--host", default=None, help="Bind host (default from settings.json)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default from settings.json)")
    parser.add_argument("--api-key", dest="api_key", default=None, help="Override the API key for this session")
    parser.add_argument(
        "--cors",
        action="append",
        dest="cors",
        default=None,
        help="Additional allowed CORS origin (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def resolve_api_settings(args: argparse.Namespace, settings: Dict[str, Any]) -> APISettings:
    api_settings = settings.get("api") if isinstance(settings.get("api"), dict) else {}

    host = _resolve_bind_host(args.host or api_settings.get("host") or DEFAULT_HOST)
    port = args.port or api_settings.get("port") or DEFAULT_PORT
    try:
        port = int(port)
    except (TypeError, ValueError):
        port = DEFAULT_PORT

    api_key = args.api_key if args.api_key else api_settings.get("api_key")
    cors = list(args.cors) if args.cors else list(api_settings.get("cors_origins") or DEFAULT_CORS)
    lan_only = bool(api_settings.get("lan_only", True))
    return APISettings(host=host, port=port, api_key=api_key, cors=cors, lan_only=lan_only)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    working_dir = resolve_working_dir()
    settings = load_settings(working_dir)
    log_cfg = settings.get("logging") if isinstance(settings.get("logging"), dict) else {}
    configure_logging(
        working_dir,
        level="DEBUG" if args.debug else str(log_cfg.get("level") or "INFO"),
        json_file=bool(log_cfg.get("json")),
    )
    try:
        resolved = resolve_api_settings(args, settings)
    except ValueError as exc:
        LOGGER.error("%s", exc)
        return 2

    if resolved.api_key:
        LOGGER.info("API key configured (%s)", redact_secret(resolved.api_key))
    else:
        LOGGER.warning("API key is not configured; all requests will be rejected with 401.")

    coordinator = build_coordinator(working_dir)
    config = APIServerConfig(
        coordinator=coordinator,
        api_key=resolved.api_key,
        cors_origins=resolved.cors,
        app_version=API_VERSION,
        lan_only=resolved.lan_only,
    )
    app = create_app(config)

    print(f"API listening on http://{resolved.host}:{resolved.port}", flush=True)

    uvicorn_config = uvicorn.Config(
        app,
        host=resolved.host,
        port=resolved.port,
        log_level="debug" if args.debug else "info",
        access_log=False,
    )
    server = uvicorn.Server(uvicorn_config)
    server.run()
    return 0 if server.started else 1


if __name__ == "__main__":
    sys.exit(main())
