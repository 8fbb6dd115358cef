# src/xinete/api/__main__.py
from __future__ import annotations

import os

import uvicorn

from xinete.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so XINETE_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (prevents "config read before env" surprises)
    from xinete.api.app import create_app

    host = os.getenv("XINETE_API_HOST", "127.0.0.1")
    port = int(os.getenv("XINETE_API_PORT", "8000"))

    uvicorn.run(create_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
