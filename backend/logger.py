import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a console handler to the root logger once; later calls only adjust the level."""
    root = logging.getLogger()
    root.setLevel(level)

    # Prevent duplicate handlers when the app module is reloaded
    if not any(getattr(h, "_chat_console", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._chat_console = True
        root.addHandler(handler)

    return root
