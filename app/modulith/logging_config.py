import logging


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger once (console handler, timestamped format).
    Later calls only adjust the level, so create_app() can run repeatedly in tests.
    """
    root = logging.getLogger()
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
    root.setLevel(numeric_level)
    if root.handlers:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)
