"""
Run the relay API with uvicorn: `python -m relay`.
"""

from __future__ import annotations

import uvicorn

from relay.app import configure_logging
from relay.config import get_settings


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "relay.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
