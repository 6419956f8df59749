#!/usr/bin/env python3
"""
Development server runner for the investor metrics API.
"""

import uvicorn
from dotenv import load_dotenv

if __name__ == "__main__":
    load_dotenv()

    from metrics_server.web.app.config import get_settings
    from metrics_server.web.app.main import app

    settings = get_settings()
    print(f"Starting {settings.APP_NAME} {settings.VERSION}...")
    print("📈 Metrics: POST http://localhost:8000/api/admin/investor-metrics")
    print("❤️  Health check: http://localhost:8000/health")
    print("\n" + "=" * 50)

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level=settings.LOG_LEVEL.lower(),
    )
