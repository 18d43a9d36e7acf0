import logging

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Install a single stream handler on the root logger.

    Safe to call more than once (API lifespan and standalone worker both
    call it); repeated calls only adjust the level.
    """
    root = logging.getLogger()
    if not any(getattr(h, "_article_comments", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._article_comments = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level.upper())
