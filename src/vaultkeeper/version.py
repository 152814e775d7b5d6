"""VaultKeeper meta information.
   Build details are stamped by the release pipeline through environment
   variables; local builds report "unknown".
"""
import os
from datetime import datetime

__title__ = 'vaultkeeper'
__description__ = (
   'Client/server secrets vault with client-side envelope encryption '
   'and chunked file transfer.'
)
__version__ = '0.1.0'

BUILD_DATE = os.environ.get("VAULTKEEPER_BUILD_DATE", "unknown")
GIT_COMMIT = os.environ.get("VAULTKEEPER_GIT_COMMIT", "unknown")


def format_build_date(date_str: str) -> str:
    # ISO timestamps are shown as "YYYY-MM-DD HH:MM:SS TZ", anything else verbatim
    if date_str == "unknown":
        return date_str
    try:
        parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
    except ValueError:
        return date_str
    return parsed.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def get_version_info() -> str:
    return (
        f"Version: {__version__}\n"
        f"Build Date: {format_build_date(BUILD_DATE)}\n"
        f"Git Commit: {GIT_COMMIT}"
    )
