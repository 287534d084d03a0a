"""
Logging facade over the standard `logging` module.

`LogService` wraps one logger behind level-named methods for application
code that takes a log service rather than a logger. The `*_async` variants
log immediately and exist so coroutine code can await them uniformly.
"""
import logging

__all__ = ['VERBOSE', 'LogService', 'get_log_service']

VERBOSE = 5
logging.addLevelName(VERBOSE, 'VERBOSE')


class LogService:
    """Level-named logging methods over a `logging.Logger`."""

    def __init__(self, logger: logging.Logger) -> None:
        if logger is None:
            raise ValueError('logger cannot be None')
        self.logger = logger

    def __repr__(self) -> str:
        return f'LogService({self.logger.name!r})'

    def log_verbose(self, message: str) -> None:
        self.logger.log(VERBOSE, message)

    def log_debug(self, message: str) -> None:
        self.logger.debug(message)

    def log_information(self, message: str) -> None:
        self.logger.info(message)

    def log_warning(self, message: str) -> None:
        self.logger.warning(message)

    def log_error(self, message: str, exc: BaseException | None = None) -> None:
        """Log an error, with the exception's traceback when one is given."""
        self.logger.error(message, exc_info=exc)

    def log_critical(self, message: str, exc: BaseException | None = None) -> None:
        """Log a critical failure, with the exception's traceback when one is given."""
        self.logger.critical(message, exc_info=exc)

    async def log_verbose_async(self, message: str) -> None:
        self.log_verbose(message)

    async def log_debug_async(self, message: str) -> None:
        self.log_debug(message)

    async def log_information_async(self, message: str) -> None:
        self.log_information(message)

    async def log_warning_async(self, message: str) -> None:
        self.log_warning(message)

    async def log_error_async(self, message: str, exc: BaseException | None = None) -> None:
        self.log_error(message, exc)

    async def log_critical_async(self, message: str, exc: BaseException | None = None) -> None:
        self.log_critical(message, exc)


def get_log_service(name: str | None = None) -> LogService:
    """Create a LogService for the named logger (the root logger when None)."""
    return LogService(logging.getLogger(name))
