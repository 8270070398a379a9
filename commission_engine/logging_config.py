import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Configure process-wide logging for the worker."""
    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(name)s: %(message)s'
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    # APScheduler is chatty at INFO for every run
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured at level {level.upper()}")
