#!/usr/bin/env python3
"""
Entrypoint to run the maintenance API:
 - No auto-reload by default
 - Optional reload for local/dev via UVICORN_RELOAD=1, restricted to the package dir

Notes:
 - Uses the fully-qualified app path "collectiondb.scripts.api:app" so we don't
   mutate sys.path.
 - Settings (MONGO_URI etc.) are read from the environment / .env on first request.
"""
import os

from dotenv import load_dotenv

load_dotenv()

ROOT_DIR = os.path.dirname(__file__)


def main() -> None:
    import uvicorn

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    # Reload is OFF by default. Enable only if explicitly requested via UVICORN_RELOAD=1
    reload_flag = os.getenv("UVICORN_RELOAD") == "1"

    if reload_flag:
        config = uvicorn.Config(
            "collectiondb.scripts.api:app",
            host=host,
            port=port,
            log_level=log_level,
            reload=True,
            reload_dirs=[os.path.join(ROOT_DIR, "collectiondb")],
            reload_excludes=["*.log", "*.json", "collectiondb/__pycache__"],
        )
    else:
        config = uvicorn.Config(
            "collectiondb.scripts.api:app", host=host, port=port, log_level=log_level, reload=False
        )

    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    main()
