"""Run the shop with uvicorn: ``python -m shopauth``."""
import logging

import uvicorn

from .config import settings


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("shopauth.main:app", host=settings.WEB_HOST, port=settings.WEB_PORT)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
