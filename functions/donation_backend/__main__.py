"""
Serves the API with uvicorn: `python -m donation_backend` or `donation-backend`.
"""

from __future__ import annotations

import uvicorn

from donation_backend.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "donation_backend.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
