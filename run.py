import logging
import os

import uvicorn

logger = logging.getLogger("admissions.run")


def main():
    logging.basicConfig(level=logging.INFO)
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    workers = int(os.getenv("WEB_CONCURRENCY", 1))

    logger.info(f"Starting admissions pipeline API on {host}:{port} ({workers} worker(s))")
    # Template bootstrap is guarded by an advisory lock, so several workers may start together
    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        workers=workers,
        reload=os.getenv("RELOAD", "false").lower() == "true",
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
