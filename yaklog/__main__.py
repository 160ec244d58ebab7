"""Command line interface to run the yaklog API server."""

import uvicorn

from yaklog.config import get_settings


def main() -> None:
    """Run the Uvicorn server hosting the API."""
    settings = get_settings()

    # uvicorn stops accepting connections on SIGINT/SIGTERM, drains in-flight
    # requests, then runs the lifespan shutdown that closes the store.
    uvicorn.run(
        "yaklog.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
