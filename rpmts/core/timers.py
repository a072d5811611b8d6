"""Named operation timers for observability tooling."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterator

logger = logging.getLogger(__name__)


class OpX(IntEnum):
    TOTAL = 0
    CHECK = 1
    ORDER = 2
    FINGERPRINT = 3
    REPACKAGE = 4
    INSTALL = 5
    ERASE = 6
    SCRIPTLETS = 7
    COMPRESS = 8
    UNCOMPRESS = 9
    DIGEST = 10
    SIGNATURE = 11
    DBADD = 12
    DBREMOVE = 13
    DBGET = 14
    DBPUT = 15
    DBDEL = 16


@dataclass
class OperationTimer:
    """Accumulated statistics for one operation."""
    count: int = 0
    seconds: float = 0.0
    bytes: int = 0

    def add(self, seconds: float, nbytes: int = 0):
        self.count += 1
        self.seconds += seconds
        self.bytes += nbytes


class OperationTimers:
    """Indexed set of operation timers."""

    def __init__(self):
        self._ops: Dict[OpX, OperationTimer] = {opx: OperationTimer() for opx in OpX}

    def op(self, opx: OpX) -> OperationTimer:
        return self._ops[opx]

    @contextmanager
    def time(self, opx: OpX, nbytes: int = 0) -> Iterator[OperationTimer]:
        """Time the enclosed block into the given accumulator."""
        timer = self._ops[opx]
        start = time.monotonic()
        try:
            yield timer
        finally:
            timer.add(time.monotonic() - start, nbytes)

    def reset(self):
        for timer in self._ops.values():
            timer.count = 0
            timer.seconds = 0.0
            timer.bytes = 0

    def log_stats(self):
        for opx, timer in self._ops.items():
            if timer.count:
                logger.info(f"{opx.name.lower():>12}: {timer.count:6d} "
                            f"{timer.seconds:10.6f}s {timer.bytes:12d} bytes")
