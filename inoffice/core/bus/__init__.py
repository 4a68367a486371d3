from __future__ import annotations

from typing import Any

__all__ = ["InOfficeBusAsync"]


def __getattr__(name: str) -> Any:
    # Avoid import-time circular dependencies by lazily importing the bus.
    if name == "InOfficeBusAsync":
        from .async_service import InOfficeBusAsync  # local import

        return InOfficeBusAsync
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
