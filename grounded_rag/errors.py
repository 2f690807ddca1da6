from __future__ import annotations

import threading
from typing import Optional

from llm.base import CollaboratorError

__all__ = ["ConfigError", "CollaboratorError", "OperationCancelled", "check_cancelled"]


class ConfigError(ValueError):
    """Invalid settings, unsupported strategy, or unusable input data. Fatal."""


class OperationCancelled(RuntimeError):
    """The caller's cancel event was set while an operation was in flight."""


def check_cancelled(cancel: Optional[threading.Event], where: str = "") -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"cancelled{': ' + where if where else ''}")
