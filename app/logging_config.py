# app/logging_config.py

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


class RequestIdFilter(logging.Filter):
    """Appends request_id=... to records that carry one via `extra`."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = getattr(record, "request_id", None)
        if request_id and "request_id=" not in str(record.msg):
            record.msg = f"{record.msg} | request_id={request_id}"
        return True


def configure_logging(level: str = "INFO") -> None:
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    root.addHandler(handler)

    # uvicorn access log is noisy for webhook traffic
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    _configured = True
