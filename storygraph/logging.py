import inspect
import logging
from pprint import pformat
from typing import Any

from pydantic import BaseModel

LOG_FORMAT = "%(asctime)s - %(pathname)s:%(lineno)d - %(levelname)s - %(message)s"


class PprintLogger:
    """A logger wrapper whose level methods accept structured records.

    Pipeline code logs dicts such as ``{"msg": "Stage 2 complete",
    "document_id": ..., "extracted": 12}``; these are pretty-printed so long
    runs stay readable in the console.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def _format_message(self, msg: Any, pprint: bool = True) -> str:
        """Format a message, optionally using pprint.

        Pydantic models are dumped as indented JSON, other objects go through
        pformat. With pprint=False the message is passed through str().
        """
        if not pprint:
            return str(msg)
        if isinstance(msg, str):
            return msg
        if isinstance(msg, BaseModel):
            return msg.model_dump_json(indent=2)
        return pformat(msg, width=120, depth=None, sort_dicts=False)

    def _log(self, level: int, msg: Any, *args, pprint: bool = True, **kwargs) -> None:
        if not self._logger.isEnabledFor(level):
            return
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, self._format_message(msg, pprint=pprint), *args, **kwargs)

    def debug(self, msg: Any, *args, pprint: bool = True, **kwargs) -> None:
        self._log(logging.DEBUG, msg, *args, pprint=pprint, **kwargs)

    def info(self, msg: Any, *args, pprint: bool = True, **kwargs) -> None:
        self._log(logging.INFO, msg, *args, pprint=pprint, **kwargs)

    def warning(self, msg: Any, *args, pprint: bool = True, **kwargs) -> None:
        self._log(logging.WARNING, msg, *args, pprint=pprint, **kwargs)

    def error(self, msg: Any, *args, pprint: bool = True, **kwargs) -> None:
        self._log(logging.ERROR, msg, *args, pprint=pprint, **kwargs)

    def exception(self, msg: Any, *args, pprint: bool = True, **kwargs) -> None:
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, *args, pprint=pprint, **kwargs)

    def __getattr__(self, name: str) -> Any:
        """Delegate any other attributes to the underlying logger."""
        return getattr(self._logger, name)


def get_logger(name: str) -> PprintLogger:
    """Module-level helper: ``logger = get_logger(__name__)``."""
    return PprintLogger(logging.getLogger(name))


def setup_logging(level: int = logging.INFO, name: str | None = None) -> PprintLogger:
    """Attach a console handler and return a PprintLogger.

    Without a name, the calling function's name is used, so a script's
    ``main`` gets its own logger.
    """
    if name is None:
        frame = inspect.currentframe().f_back  # type: ignore[union-attr]
        name = frame.f_code.co_name  # type: ignore[union-attr]
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return PprintLogger(logger)
