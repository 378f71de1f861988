"""Desktop app control for Dotion."""

from .controller import (
    AppAction,
    AppController,
    MacAppController,
    ProcessAppController,
    get_app_controller,
)

__all__ = [
    "AppAction",
    "AppController",
    "MacAppController",
    "ProcessAppController",
    "get_app_controller",
]
