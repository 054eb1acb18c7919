# utils/logger.py
import os
import logging
from typing import Optional

# Record attributes carried by run-scoped events, in display order.
RUN_CONTEXT_FIELDS = ("batch_id", "run_id")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(run_context)s%(message)s'


class RunContextFormatter(logging.Formatter):
    """
    Formatter that renders the batch/run ids of a record as a message prefix.

    Records without ids (plain logger calls) render exactly like the default
    format; records from a RunContextAdapter get "[batch_id=.. run_id=..] ".
    """

    def format(self, record: logging.LogRecord) -> str:
        context = " ".join(
            f"{name}={getattr(record, name)}"
            for name in RUN_CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )
        record.run_context = f"[{context}] " if context else ""
        return super().format(record)


def setup_logger(
    logger_name: str,
    log_file: Optional[str] = None,
    level: int = logging.INFO,
    log_dir: str = "logs"
) -> logging.Logger:
    """
    Set up and return a pipeline logger writing to a file and the console.

    Child loggers (e.g. "warehouse_pipeline.bronze" under "warehouse_pipeline")
    propagate into the handlers configured here, and both handlers render the
    batch_id/run_id carried by run-scoped events.

    Args:
        logger_name: Name of the logger
        log_file: Optional specific log filename (default: {logger_name}.log)
        level: Logging level (default: INFO)
        log_dir: Directory for log files (default: logs)

    Returns:
        Configured logger instance
    """
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, log_file or f"{logger_name.lower().replace(' ', '_')}.log")

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)

    # Reconfiguring replaces the handlers; the old file handle is released.
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = RunContextFormatter(LOG_FORMAT)
    for handler in (logging.FileHandler(log_path), logging.StreamHandler()):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.info(f"Log file is being saved to: {os.path.abspath(log_path)}")
    return logger


class RunContextAdapter(logging.LoggerAdapter):
    """Attach the batch/run an event belongs to as record attributes."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.update({key: value for key, value in self.extra.items() if value is not None})
        kwargs["extra"] = extra
        return msg, kwargs


def with_run_context(logger: logging.Logger, **ids) -> RunContextAdapter:
    """Wrap a logger so its events carry batch_id / run_id."""
    return RunContextAdapter(logger, ids)
