"""User-visible notifications for VaultSync.

This module provides:
- Native OS notifications (Windows toast, macOS notification center, Linux notify-send)
- Notifier: fire-and-forget sink used by the reconciliation engine
"""

from __future__ import annotations

import logging
import platform
import subprocess
from dataclasses import dataclass
from enum import Enum, auto

logger = logging.getLogger(__name__)

APP_NAME = "VaultSync"


class NotificationType(Enum):
    """Type of notification."""

    INFO = auto()
    WARNING = auto()
    ERROR = auto()
    CONFLICT = auto()


@dataclass
class Notification:
    """Represents a notification to display."""

    title: str
    message: str
    type: NotificationType = NotificationType.INFO


def _notify_windows(notification: Notification) -> bool:
    """Send notification on Windows using a PowerShell toast."""
    try:
        ps_script = f'''
        [Windows.UI.Notifications.ToastNotificationManager, Windows.UI.Notifications, ContentType = WindowsRuntime] | Out-Null
        [Windows.Data.Xml.Dom.XmlDocument, Windows.Data.Xml.Dom.XmlDocument, ContentType = WindowsRuntime] | Out-Null

        $template = @"
        <toast>
            <visual>
                <binding template="ToastText02">
                    <text id="1">{notification.title}</text>
                    <text id="2">{notification.message}</text>
                </binding>
            </visual>
        </toast>
"@

        $xml = New-Object Windows.Data.Xml.Dom.XmlDocument
        $xml.LoadXml($template)
        $toast = New-Object Windows.UI.Notifications.ToastNotification $xml
        [Windows.UI.Notifications.ToastNotificationManager]::CreateToastNotifier("{APP_NAME}").Show($toast)
        '''

        subprocess.run(
            ["powershell", "-ExecutionPolicy", "Bypass", "-Command", ps_script],
            capture_output=True,
            check=False,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
        return True
    except OSError as e:
        logger.debug(f"Windows notification failed: {e}")
        return False


def _notify_macos(notification: Notification) -> bool:
    """Send notification on macOS using osascript."""
    try:
        title = notification.title.replace('"', '\\"')
        message = notification.message.replace('"', '\\"')

        script = f'display notification "{message}" with title "{title}"'
        subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            check=True,
        )
        return True
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug(f"macOS notification failed: {e}")
        return False


def _notify_linux(notification: Notification) -> bool:
    """Send notification on Linux using notify-send."""
    urgency_map = {
        NotificationType.INFO: "normal",
        NotificationType.WARNING: "normal",
        NotificationType.ERROR: "critical",
        NotificationType.CONFLICT: "critical",
    }
    urgency = urgency_map.get(notification.type, "normal")

    try:
        subprocess.run(
            [
                "notify-send",
                "--urgency", urgency,
                "--app-name", APP_NAME,
                notification.title,
                notification.message,
            ],
            capture_output=True,
            check=True,
        )
        return True
    except FileNotFoundError:
        logger.debug("notify-send not found")
        return False
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug(f"Linux notification failed: {e}")
        return False


def send_notification(notification: Notification) -> bool:
    """Send a system notification.

    Args:
        notification: The notification to send.

    Returns:
        True if notification was sent, False if failed or unavailable.
    """
    system = platform.system()

    if system == "Windows":
        return _notify_windows(notification)
    elif system == "Darwin":
        return _notify_macos(notification)
    elif system == "Linux":
        return _notify_linux(notification)
    else:
        logger.warning(f"Notifications not supported on {system}")
        return False


class Notifier:
    """Fire-and-forget notification sink.

    Every message is logged. When ``desktop`` is true it is also shown as
    a native OS notification.
    """

    def __init__(self, desktop: bool = True) -> None:
        self._desktop = desktop

    def notify(self, notification: Notification) -> None:
        """Log and optionally display a notification."""
        level = {
            NotificationType.INFO: logging.INFO,
            NotificationType.WARNING: logging.WARNING,
            NotificationType.ERROR: logging.ERROR,
            NotificationType.CONFLICT: logging.WARNING,
        }[notification.type]
        logger.log(level, f"{notification.title}: {notification.message}")
        if self._desktop:
            send_notification(notification)

    def sync_started(self) -> None:
        self.notify(Notification(
            title=f"{APP_NAME} - Sync",
            message="Starting sync...",
        ))

    def sync_complete(self, summary: str) -> None:
        self.notify(Notification(
            title=f"{APP_NAME} - Sync Complete",
            message=summary,
        ))

    def info(self, message: str) -> None:
        self.notify(Notification(title=APP_NAME, message=message))

    def warning(self, message: str) -> None:
        self.notify(Notification(
            title=f"{APP_NAME} - Warning",
            message=message,
            type=NotificationType.WARNING,
        ))

    def error(self, message: str) -> None:
        self.notify(Notification(
            title=f"{APP_NAME} - Error",
            message=message,
            type=NotificationType.ERROR,
        ))

    def conflict(self, path: str, message: str) -> None:
        self.notify(Notification(
            title=f"{APP_NAME} - Conflict Detected",
            message=f"'{path}': {message}",
            type=NotificationType.CONFLICT,
        ))
