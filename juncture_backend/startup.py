"""
Application startup utilities: load .env early and configure logging.

This module should be imported as early as possible (before Settings.from_env() is called)
so python-dotenv loads the .env file into the process environment during local/dev runs.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from .logging_config import configure_logging

# Real environment variables always win over values from .env.
_dotenv_path = os.getenv("JUNCTURE_ENV_FILE") or os.path.join(os.getcwd(), ".env")
_loaded = load_dotenv(dotenv_path=_dotenv_path, override=False)

configure_logging(os.getenv("LOG_LEVEL", "INFO"))

logger = logging.getLogger("juncture_backend.startup")
logger.info("Startup initialized", extra={"event": "startup", "extra": {"dotenv_loaded": _loaded}})
