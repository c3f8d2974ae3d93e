#!/usr/bin/env python3
"""Entry point for running the NexusRBX billing API."""

import uvicorn

from nexusrbx.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "nexusrbx.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
