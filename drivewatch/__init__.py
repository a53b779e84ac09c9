"""
Drive Watch - Monitor Google Drive files and folders and fan out changes.

Receives Drive push notifications, works out whether a document really
changed, fetches and normalizes its content to plain text and publishes it
to connected subscribers.

Import from submodules directly:
    from drivewatch.config import MonitorSettings
    from drivewatch.drive import DriveClient
    from drivewatch.monitor import ChangeReconciler
    from drivewatch.server import create_app
"""


def _get_version():
    """Read version from VERSION file."""
    from pathlib import Path
    version_file = Path(__file__).parent.parent / "VERSION"
    if version_file.exists():
        return version_file.read_text().strip()
    return "0.0.0"


__version__ = _get_version()
