"""ASGI entry point (serve ``main:app`` with any ASGI server)."""
from __future__ import annotations

import logging

from gsl.api import create_app

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = create_app()
