"""
Desktop App Controller for Dotion.

A single capability interface over OS-level app automation:
- launch, quit, minimize, focus
- list running (foreground) applications

Concrete controllers:
- MacAppController: `open -a` and AppleScript via osascript
- ProcessAppController: psutil process control, optional pygetwindow windows

The tool executor only ever talks to `AppController.perform`.
"""

from __future__ import annotations

import subprocess
import sys
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import psutil
from loguru import logger

from ..core.errors import ValidationError

try:
    import pygetwindow as gw
    PYGETWINDOW_AVAILABLE = True
except (ImportError, NotImplementedError):
    PYGETWINDOW_AVAILABLE = False


class AppAction(Enum):
    """Supported app actions."""
    LAUNCH = "launch"
    QUIT = "quit"
    MINIMIZE = "minimize"
    FOCUS = "focus"


Runner = Callable[[Sequence[str]], "subprocess.CompletedProcess[str]"]


def _run(argv: Sequence[str]) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(list(argv), capture_output=True, text=True, timeout=15, check=False)


class AppController(ABC):
    """Capability interface for desktop app control."""

    def __init__(self, allowed_apps: Optional[List[str]] = None):
        """
        Initialize the controller.

        Args:
            allowed_apps: Application names that may be controlled. None allows all.
        """
        self.allowed_apps = allowed_apps

    def _is_allowed(self, app_name: str) -> bool:
        if self.allowed_apps is None:
            return True
        return app_name.lower() in [a.lower() for a in self.allowed_apps]

    @staticmethod
    def sanitize(app_name: Optional[str]) -> str:
        """Trim an app name and reject empty or control-character names."""
        if not isinstance(app_name, str) or not app_name.strip():
            raise ValidationError("appName is required")
        name = app_name.strip()
        if any(ord(c) < 32 for c in name):
            raise ValidationError("appName contains invalid characters")
        return name

    @abstractmethod
    def launch(self, app_name: str) -> Tuple[bool, str]:
        ...

    @abstractmethod
    def quit(self, app_name: str) -> Tuple[bool, str]:
        ...

    @abstractmethod
    def minimize(self, app_name: str) -> Tuple[bool, str]:
        ...

    @abstractmethod
    def focus(self, app_name: str) -> Tuple[bool, str]:
        ...

    @abstractmethod
    def list_running(self) -> List[str]:
        ...

    def perform(self, app_name: str, action: str) -> Tuple[bool, str]:
        """
        Run one action against an app.

        Args:
            app_name: Application name.
            action: One of launch, quit, minimize, focus.

        Returns:
            Tuple of (success, message).

        Raises:
            ValidationError: Unknown action or empty app name.
        """
        name = self.sanitize(app_name)
        try:
            app_action = AppAction(str(action).lower())
        except ValueError as e:
            raise ValidationError(f"Unknown app action: {action}") from e

        if not self._is_allowed(name):
            return False, f"Application '{name}' is not in the allowed list."

        handler = {
            AppAction.LAUNCH: self.launch,
            AppAction.QUIT: self.quit,
            AppAction.MINIMIZE: self.minimize,
            AppAction.FOCUS: self.focus,
        }[app_action]

        success, message = handler(name)
        if success:
            logger.info(f"App control: {app_action.value} {name}")
        else:
            logger.warning(f"App control failed: {app_action.value} {name}: {message}")
        return success, message


def _applescript_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class MacAppController(AppController):
    """macOS app control through `open` and osascript."""

    RUNNING_APPS_SCRIPT = """
try
    tell application "System Events"
        get name of every application process whose background only is false
    end tell
on error
    return ""
end try
"""

    def __init__(self, allowed_apps: Optional[List[str]] = None, runner: Runner = _run):
        super().__init__(allowed_apps)
        self._runner = runner

    def _exec(self, argv: Sequence[str], done: str) -> Tuple[bool, str]:
        try:
            result = self._runner(argv)
        except (OSError, subprocess.SubprocessError) as e:
            logger.error(f"Failed to run {argv[0]}: {e}")
            return False, str(e)

        if result.returncode != 0:
            return False, (result.stderr or "").strip() or f"{argv[0]} exited with {result.returncode}"
        return True, done

    def launch(self, app_name: str) -> Tuple[bool, str]:
        return self._exec(["open", "-a", app_name], f"Opened {app_name}")

    def focus(self, app_name: str) -> Tuple[bool, str]:
        # open -a activates an already running app
        return self._exec(["open", "-a", app_name], f"Focused {app_name}")

    def quit(self, app_name: str) -> Tuple[bool, str]:
        script = f'quit app "{_applescript_string(app_name)}"'
        return self._exec(["osascript", "-e", script], f"Quit {app_name}")

    def minimize(self, app_name: str) -> Tuple[bool, str]:
        name = _applescript_string(app_name)
        script = f"""
try
    tell application "System Events"
        set visible of process "{name}" to false
    end tell
on error
    tell application "System Events"
        set proc to first process whose name contains "{name}"
        set visible of proc to false
    end tell
end try
"""
        return self._exec(["osascript", "-e", script], f"Minimized {app_name}")

    def list_running(self) -> List[str]:
        try:
            result = self._runner(["osascript", "-e", self.RUNNING_APPS_SCRIPT])
        except (OSError, subprocess.SubprocessError) as e:
            logger.error(f"Failed to list running apps: {e}")
            return []

        if result.returncode != 0:
            # -1719 is the accessibility permission error
            if "(-1719)" not in (result.stderr or ""):
                logger.error(f"Failed to list running apps: {result.stderr}")
            return []

        output = (result.stdout or "").strip()
        if not output:
            return []
        return [name.strip() for name in output.split(", ") if name.strip()]


class ProcessAppController(AppController):
    """Cross-platform app control using psutil and, when present, pygetwindow."""

    def __init__(
        self,
        allowed_apps: Optional[List[str]] = None,
        popen: Callable[..., object] = subprocess.Popen,
    ):
        super().__init__(allowed_apps)
        self._popen = popen

    def _matching_processes(self, app_name: str) -> List[psutil.Process]:
        app_lower = app_name.lower()
        matches = []
        for proc in psutil.process_iter(["pid", "name"]):
            name = proc.info.get("name") or ""
            if app_lower in name.lower():
                matches.append(proc)
        return matches

    def _windows(self, app_name: str) -> list:
        if not PYGETWINDOW_AVAILABLE:
            return []
        try:
            return [w for w in gw.getWindowsWithTitle(app_name) if w.title]
        except Exception as e:
            logger.error(f"Failed to enumerate windows: {e}")
            return []

    def launch(self, app_name: str) -> Tuple[bool, str]:
        try:
            self._popen([app_name], start_new_session=True)
        except OSError as e:
            logger.error(f"Failed to open {app_name}: {e}")
            return False, f"Failed to open {app_name}: {e}"
        return True, f"Opened {app_name}"

    def quit(self, app_name: str) -> Tuple[bool, str]:
        closed = 0
        for proc in self._matching_processes(app_name):
            try:
                proc.terminate()
                closed += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                logger.warning(f"Could not terminate {proc.pid}: {e}")

        if closed:
            return True, f"Closed {closed} instance(s) of {app_name}"
        return False, f"No running instances of {app_name} found"

    def minimize(self, app_name: str) -> Tuple[bool, str]:
        if not PYGETWINDOW_AVAILABLE:
            return False, "Window control not available"
        windows = self._windows(app_name)
        if not windows:
            return False, f"No window found for {app_name}"
        for window in windows:
            window.minimize()
        return True, f"Minimized {app_name}"

    def focus(self, app_name: str) -> Tuple[bool, str]:
        windows = self._windows(app_name)
        if windows:
            window = windows[0]
            if window.isMinimized:
                window.restore()
            window.activate()
            return True, f"Focused {app_name}"
        # Not running: focusing means bringing it up
        return self.launch(app_name)

    def list_running(self) -> List[str]:
        names = set()
        for proc in psutil.process_iter(["name"]):
            try:
                name = proc.info.get("name")
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if name:
                names.add(name)
        return sorted(names)


_app_controller: Optional[AppController] = None


def get_app_controller(allowed_apps: Optional[List[str]] = None) -> AppController:
    """Get the platform app controller singleton."""
    global _app_controller
    if _app_controller is None:
        if sys.platform == "darwin":
            _app_controller = MacAppController(allowed_apps)
        else:
            _app_controller = ProcessAppController(allowed_apps)
    return _app_controller
