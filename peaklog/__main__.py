import logging
import os
import sys
from pathlib import Path

from aiohttp import web

from config import load_settings
from config.settings import summarize_settings
from database import close_client
from peaklog.server import create_app
from utils.env_file import load_env_file

LOG_FORMAT = "%(asctime)s level=%(levelname)s name=%(name)s msg=\"%(message)s\""


def setup_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.captureWarnings(True)


def install_excepthook() -> None:
    def _hook(exc_type, exc_value, exc_traceback):
        logging.error(
            "Uncaught exception",
            exc_info=(exc_type, exc_value, exc_traceback),
        )
    sys.excepthook = _hook


def main() -> None:
    env_path = Path(os.getenv("PEAKLOG_ENV_FILE", ".env"))
    loaded = load_env_file(env_path)
    setup_logging()
    install_excepthook()
    if loaded:
        logging.info("Loaded %s variables from %s.", len(loaded), env_path)

    try:
        settings = load_settings()
    except RuntimeError as exc:
        logging.error("Configuration error: %s", exc)
        raise SystemExit(1) from None
    logging.info("Settings: %s", summarize_settings(settings))

    host = os.environ.get("API_HOST", "0.0.0.0").strip() or "0.0.0.0"
    port = int((os.environ.get("PORT") or os.environ.get("API_PORT") or "8080").strip() or "8080")
    app = create_app(settings=settings)
    logging.info("Starting PeakLog API on %s:%s", host, port)
    try:
        web.run_app(app, host=host, port=port, print=None)
    finally:
        close_client()


if __name__ == "__main__":
    main()
