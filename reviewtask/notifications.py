"""
Desktop notifications for background analyze runs.

Uses notify-send (freedesktop compliant). Silently does nothing where it is
not installed.
"""

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)


VALID_URGENCIES = ("low", "normal", "critical")
MAX_NOTIFICATION_LENGTH = 200


def notify(title: str, message: str, urgency: str = "normal"):
    """
    Send desktop notification.

    Args:
        title: Notification title
        message: Notification body
        urgency: One of "low", "normal", "critical"
    """
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    if not shutil.which("notify-send"):
        logger.debug("notify-send not found, skipping notification")
        return

    if len(message) > MAX_NOTIFICATION_LENGTH:
        message = message[:MAX_NOTIFICATION_LENGTH] + "..."

    try:
        result = subprocess.run(
            ["notify-send", "--urgency", urgency, "--app-name", "reviewtask", title, message],
            capture_output=True, text=True, timeout=5,
        )
        if result.returncode != 0:
            logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr}")
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")


def notify_run_finished(pr_number: int, status: str, processed: int, total: int, new_tasks: int):
    """Notify the outcome of a background analyze run."""
    title = f"reviewtask: PR #{pr_number}"
    if status == "complete":
        notify(title, f"Analysis complete: {new_tasks} new tasks from {total} comments", "low")
    elif status == "failed":
        notify(title, f"Analysis failed after {processed}/{total} comments", "critical")
    elif status == "timed_out":
        notify(title, f"Analysis timed out at {processed}/{total} comments; run again to resume", "normal")
    else:
        notify(title, f"Analyzed {processed}/{total} comments; run again to continue", "normal")


def notify_run_error(pr_number: int, error: str):
    notify(f"reviewtask: PR #{pr_number}", f"Analysis error: {error}", "critical")
