import uvicorn

from src.api.config import load_settings
from src.api.logging_config import get_logger, setup_logging


def main() -> None:
    settings = load_settings()
    # Logging has to be configured before the app module logs anything.
    setup_logging(log_level=settings.log_level, log_file=settings.log_file)
    logger = get_logger(__name__)

    logger.info("WS relay listening on ws://%s:%d", settings.host, settings.port)
    uvicorn.run("src.api.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
