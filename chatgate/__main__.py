"""Run the gateway with uvicorn: ``python -m chatgate``."""

import uvicorn

from chatgate.config.settings import settings


def main() -> None:
    uvicorn.run(
        "chatgate.core.gateway:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
