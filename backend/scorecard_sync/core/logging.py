import logging

from scorecard_sync.core.config import settings


def configure_logging() -> None:
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )
    # APScheduler logs every job submission at INFO
    logging.getLogger("apscheduler").setLevel(
        logging.DEBUG if settings.debug else logging.WARNING
    )
