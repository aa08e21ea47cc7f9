"""Entrypoint for running the inventory_dash FastAPI service locally."""
from __future__ import annotations

import uvicorn

from inventory_reports import configure_logging
from inventory_reports.config import load_config


if __name__ == "__main__":
    config = load_config()
    configure_logging(config.log_level)
    uvicorn.run(
        "inventory_reports.api:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
        log_level=config.log_level.lower(),
    )
