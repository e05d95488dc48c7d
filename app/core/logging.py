# app/core/logging.py
import logging

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(h, "_fuel_app", False) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler._fuel_app = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # httpx logs every request at INFO, which drowns the pipeline summaries
    logging.getLogger("httpx").setLevel(logging.WARNING)
