"""
Atelier server entry point.

    python main.py            # dev server, reloads in development
    uvicorn main:app          # what deployments run
"""

import uvicorn

from atelier.core.config import get_settings
from atelier.factory import create_app

app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.env == "development",
        log_level=settings.log_level.lower(),
        # SSE responses stream for minutes; keep idle sockets around
        timeout_keep_alive=75,
    )
