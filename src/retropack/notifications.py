from __future__ import annotations

import logging
from typing import Protocol

from .app_logging import log_with_fields


class Notifier(Protocol):
    def notify_success(self, title: str, body: str) -> None: ...

    def notify_failure(self, title: str, body: str) -> None: ...


class LogNotifier:
    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    def notify_success(self, title: str, body: str) -> None:
        log_with_fields(self.logger, logging.INFO, "notify_success", title=title, body=body)

    def notify_failure(self, title: str, body: str) -> None:
        log_with_fields(self.logger, logging.WARNING, "notify_failure", title=title, body=body)
