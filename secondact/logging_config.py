import logging


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # stripe logs every request at INFO
    logging.getLogger("stripe").setLevel(logging.WARNING)
