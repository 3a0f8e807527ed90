import logging
from typing import Protocol

from image_builder.sanitize import sanitize_error_message


logger = logging.getLogger(__name__)


class Ui(Protocol):
    def say(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def errorf(self, fmt: str, *args: object) -> None: ...


class LoggingUi:
    """Line-oriented progress sink that writes through the logging tree."""

    def __init__(self, build_id: str | None = None, secrets: tuple[str, ...] = ()):
        self.build_id = build_id
        self.secrets = secrets
        self.lines: list[str] = []

    def _emit(self, level: int, message: str) -> None:
        clean = sanitize_error_message(message, self.secrets)
        self.lines.append(clean)
        if self.build_id:
            logger.log(level, "build_id=%s %s", self.build_id, clean)
        else:
            logger.log(level, "%s", clean)

    def say(self, message: str) -> None:
        self._emit(logging.INFO, message)

    def error(self, message: str) -> None:
        self._emit(logging.ERROR, message)

    def errorf(self, fmt: str, *args: object) -> None:
        self.error(fmt % args if args else fmt)
