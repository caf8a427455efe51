#!/usr/bin/env python3
"""
ASGI entry point for the laminates quotation backend
"""
import os

from laminates.core.app_factory import AppConfig, create_app

app = create_app(AppConfig(environment=os.getenv("ENVIRONMENT", "development").lower()))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
