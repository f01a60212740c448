from __future__ import annotations

from order_sync.app import create_app
from order_sync.config import configure_logging, load_settings

settings = load_settings()
configure_logging(settings.log_level)

app = create_app(allowed_origins=settings.allowed_origins)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=True,
    )
