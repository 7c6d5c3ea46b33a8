"""Configure the shared logger for interRSIS."""

import sys
from contextlib import suppress
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from loguru import logger as _logger

if TYPE_CHECKING:
    from loguru import Logger  # only for type checking


class Log:
    """Ensure a single configured logger across the package.

    Only the sinks installed by this class are replaced on reconfiguration;
    handlers added elsewhere (for instance by a test harness) are left alone.
    """

    _instance: Optional["Log"] = None

    def __new__(cls: type["Log"], *args: Any, **kwargs: Any) -> "Log":
        """Establish or reconfigure the singleton logger instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._handler_ids = []
            cls._instance._configure(*args, **kwargs)
        elif args or kwargs:
            cls._instance._configure(*args, **kwargs)
        return cls._instance

    def _configure(
        self,
        log_file: str | Path | None = None,
        level: str = "INFO",
        rotation: str = "10 MB",
        retention: str = "10 days",
        debug_mode: bool = False,
        console: bool = True,
    ) -> None:
        """Apply console and file logging options to the logger."""
        for handler_id in self._handler_ids:
            _logger.remove(handler_id)
        self._handler_ids = []
        # loguru installs a default stderr sink at import; it is ours to replace
        with suppress(ValueError):
            _logger.remove(0)
        console_level = "DEBUG" if debug_mode else level

        if console:
            self._handler_ids.append(
                _logger.add(
                    sys.stdout,
                    level=console_level,
                    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                    "<level>{level: <8}</level> | "
                    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
                    "<level>{message}</level>",
                    enqueue=False,
                )
            )

        if log_file is not None:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._handler_ids.append(
                _logger.add(
                    path,
                    level=level,
                    rotation=rotation,
                    retention=retention,
                    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
                    "{name}:{function}:{line} - {message}",
                    enqueue=False,
                    mode="a",
                )
            )

    @property
    def logger(self) -> "Logger":
        """Return the configured loguru logger for emission."""
        return _logger
