"""Server entrypoint for the DeskRelay relay and console."""

from __future__ import annotations

import argparse
import logging

from src.deskrelay.core.config_loader import get_logging_config, load_config_or_defaults


def configure_logging(level: str | None = None) -> None:
    resolved = (level or get_logging_config(load_config_or_defaults())["level"]).upper()
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_server(*, host: str = "127.0.0.1", port: int = 3000, log_level: str | None = None) -> int:
    configure_logging(log_level)
    try:
        import uvicorn
    except Exception as exc:  # pragma: no cover - dependency error guard
        raise RuntimeError("uvicorn is required to serve the DeskRelay app") from exc

    uvicorn.run("app.main:app", host=host, port=port, reload=False, log_config=None)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the DeskRelay bulk ticket relay.")
    parser.add_argument("--host", default="127.0.0.1", help="Bind host.")
    parser.add_argument("--port", type=int, default=3000, help="Bind port.")
    parser.add_argument("--log-level", default=None, help="Override the configured log level (DEBUG, INFO, ...).")
    args = parser.parse_args(argv)
    return run_server(host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    raise SystemExit(main())
