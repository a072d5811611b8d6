"""Progress notification for running transactions."""

from enum import IntEnum
from typing import Any, Protocol


class CallbackType(IntEnum):
    """Progress points reported to the notifier."""
    UNKNOWN = 0
    INST_PROGRESS = 1 << 0
    INST_START = 1 << 1
    INST_OPEN_FILE = 1 << 2
    INST_CLOSE_FILE = 1 << 3
    TRANS_PROGRESS = 1 << 4
    TRANS_START = 1 << 5
    TRANS_STOP = 1 << 6
    UNINST_PROGRESS = 1 << 7
    UNINST_START = 1 << 8
    UNINST_STOP = 1 << 9
    REPACKAGE_PROGRESS = 1 << 10
    REPACKAGE_START = 1 << 11
    REPACKAGE_STOP = 1 << 12
    UNPACK_ERROR = 1 << 13
    CPIO_ERROR = 1 << 14
    SCRIPT_ERROR = 1 << 15


class Notifier(Protocol):
    """Receives progress events from TransactionSet.run().

    The value returned for INST_OPEN_FILE is stored on the element
    (te.handle) until the matching INST_CLOSE_FILE call; nothing else is
    interpreted.
    """

    def notify(self, ts, te, what: CallbackType, amount: int, total: int) -> Any:
        ...
