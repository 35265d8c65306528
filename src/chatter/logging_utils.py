"""Runtime logging helpers."""

from __future__ import annotations

import contextlib
import os
import sys
from collections.abc import Generator
from contextvars import ContextVar
from logging import Handler
from typing import Literal

import loguru
from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile = Literal["default", "chat"]

_PROFILE_FORMATS: dict[LogProfile, str] = {
    "chat": "{level} | {extra[user]} |{message}",
    "default": "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<6} | {name}:{function}:{line} | {extra[user]} | {message}",
}
_CONFIGURED_PROFILE: LogProfile | None = None
_current_user: ContextVar[str] = ContextVar("chatter_user", default="-")


def current_user() -> str:
    """Get the user id bound to the running task, or '-'."""
    return _current_user.get()


@contextlib.contextmanager
def bind_user(user_id: int | str) -> Generator[None, None, None]:
    """Tag log records emitted inside the block with one user id."""
    token = _current_user.set(str(user_id))
    try:
        yield
    finally:
        _current_user.reset(token)


def _build_chat_handler() -> Handler:
    return RichHandler(
        console=get_console(),
        show_level=True,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )


def configure_logging(*, profile: LogProfile = "default", level: str | None = None) -> None:
    """Configure process-level logging once."""

    def inject_context(record: loguru.Record) -> None:
        record["extra"]["user"] = current_user()

    global _CONFIGURED_PROFILE
    if profile == _CONFIGURED_PROFILE:
        return

    resolved_level = (level or os.getenv("CHATTER_LOG_LEVEL", "INFO")).upper()
    logger.remove()
    if profile == "chat":
        logger.add(
            _build_chat_handler(),
            level=resolved_level,
            format="{message}",
            backtrace=False,
            diagnose=False,
        )
    else:
        logger.add(
            sys.stderr,
            level=resolved_level,
            format=_PROFILE_FORMATS[profile],
            backtrace=False,
            diagnose=False,
        )
    logger.configure(patcher=inject_context)
    _CONFIGURED_PROFILE = profile
