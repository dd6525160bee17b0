"""
Filesystem error classification for the bridge's rename loop.

Classifies rename errors as lock contention (another process still holds the
file, worth retrying) or permanent (permissions, disk, vanished file).
"""

import errno
from enum import Enum, auto


class FsErrorType(Enum):
    """Classification of rename errors."""

    LOCKED = auto()  # Held by another process - retry after a delay
    PERMANENT = auto()  # Permission denied, disk error, missing file


# POSIX errno values raised while another process holds the file
LOCKED_ERRNO = {
    errno.EBUSY,  # Device or resource busy
    errno.ETXTBSY,  # Text file busy
}

# Windows error codes surfaced as PermissionError.winerror
LOCKED_WINERROR = {
    32,  # ERROR_SHARING_VIOLATION
    33,  # ERROR_LOCK_VIOLATION
}


def classify_fs_error(exception: OSError) -> FsErrorType:
    """
    Classify whether a rename failure is lock contention.

    Plain EACCES/EPERM without a sharing-violation winerror is treated as a
    real permission problem.

    Args:
        exception: The OSError raised by the rename

    Returns:
        FsErrorType indicating if the error is worth retrying
    """
    if getattr(exception, "winerror", None) in LOCKED_WINERROR:
        return FsErrorType.LOCKED

    if exception.errno in LOCKED_ERRNO:
        return FsErrorType.LOCKED

    return FsErrorType.PERMANENT


def is_lock_contention(exception: OSError) -> bool:
    return classify_fs_error(exception) == FsErrorType.LOCKED
