import logging


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the CLI and the viewer service."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # Per-request connection chatter from requests is only useful when debugging
    logging.getLogger("urllib3").setLevel(logging.DEBUG if debug else logging.WARNING)
