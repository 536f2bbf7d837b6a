import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """
    Configure application logging once for the UI, API server and scripts.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
