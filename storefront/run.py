#!/usr/bin/env python3
"""Run the storefront trust layer"""
import uvicorn

from storefront.core.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "storefront.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )
