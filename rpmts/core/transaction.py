"""
Transaction set for rpmts

A TransactionSet collects install and erase elements, checks their
dependencies against the install database, orders them and runs them.
The behaviour is split into mixins (see rpmts.core.ts); this module holds
the shared state, the lifecycle and the plain accessors.
"""

import logging
import sqlite3
import time
import weakref
from pathlib import Path
from typing import Any, Iterator, List, Optional

from .config import TransactionConfig, get_db_path
from .database import PackageDatabase
from .diskspace import DiskSpaceMonitor
from .element import ElementList, TransactionElement
from .flags import (ElementType, Goal, ProbFilter, TransactionType, TransFlags,
                    VSFlags)
from .notify import CallbackType, Notifier
from .problems import ProblemSet
from .score import ScoreTracker, score_free
from .timers import OperationTimer, OperationTimers, OpX
from .ts import AdmissionMixin, CheckMixin, OrderMixin, RunMixin

logger = logging.getLogger(__name__)

SELINUX_ENFORCE = Path('/sys/fs/selinux/enforce')

_DB_ERRORS = (sqlite3.Error, OSError, RuntimeError)


def selinux_enabled() -> bool:
    """Check whether SELinux is active on this host."""
    return SELINUX_ENFORCE.exists()


class TransactionSet(AdmissionMixin, CheckMixin, OrderMixin, RunMixin):
    """A set of package install/erase elements processed as one transaction.

    Usage:
        ts = TransactionSet.create(TransactionConfig(root_dir='/mnt'))
        ts.add_install_element(header, key='foo.rpm', upgrade=True)
        if ts.check() == 0 and not ts.problems:
            ts.order()
            ts.run()
        ts.free()

    The object is reference counted: link() adds a holder, unlink()
    drops one and tears the set down when none remain.
    """

    def __init__(self, config: Optional[TransactionConfig] = None):
        self.config = config or TransactionConfig()
        self.nrefs = 0
        self.tid = int(time.time())
        self._type = TransactionType.NORMAL
        self._goal = Goal.UNKNOWN
        self._trans_flags = TransFlags.NONE
        self._vsflags = VSFlags.DEFAULT
        self._ignore_set = ProbFilter.NONE

        self._root_dir = self.config.root_dir or '/'
        self._curr_dir: Optional[str] = None
        self._chroot_done = False
        self._script_fd = None
        self._spec = None
        self._relocate_element: Optional[TransactionElement] = None
        self._selinux_enabled = selinux_enabled()
        self._color = 0
        self._prefcolor = 0

        self._notifier: Optional[Notifier] = None
        self._solver = None
        self._solve_data: Any = None
        self.executor = None

        self._rdb: Optional[PackageDatabase] = None
        self._dbmode = self.config.dbmode
        self._sdb: Optional[PackageDatabase] = None
        self._sdbmode = self.config.sdbmode

        self._elements = ElementList()
        self.problems = ProblemSet()
        self.suggests: List[dict] = []
        self.available_packages: List[dict] = []
        self.dsi = DiskSpaceMonitor(self.config.mounts_file)
        self.timers = OperationTimers()

        self._score: Optional[ScoreTracker] = None
        self._running_ref = None
        self.rollback_ts: Optional['TransactionSet'] = None

        self._resolved = False
        self._graph = None
        self.unordered: List[TransactionElement] = []
        self.dropped_edges = []
        self.unordered_successors = 0
        self.ntrees = 0
        self.max_depth = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @classmethod
    def create(cls, config: Optional[TransactionConfig] = None) -> 'TransactionSet':
        """Create a transaction set holding one reference."""
        ts = cls(config)
        if not ts.config.lazy_db_open:
            ts.open_db(ts._dbmode)
        return ts.link("create")

    def link(self, msg: str = '') -> 'TransactionSet':
        self.nrefs += 1
        if self.config.debug:
            logger.debug(f"--> ts {id(self):#x} ++ {self.nrefs} {msg}")
        return self

    def unlink(self, msg: str = '') -> Optional['TransactionSet']:
        """Drop a reference; the set is freed when the last one goes."""
        if self.config.debug:
            logger.debug(f"<-- ts {id(self):#x} -- {self.nrefs} {msg}")
        if self.nrefs <= 0:
            raise RuntimeError(f"unlink of a freed transaction set {id(self):#x}")
        self.nrefs -= 1
        if self.nrefs > 0:
            return self
        self.free()
        return None

    def free(self):
        """Release everything the set holds."""
        if self.rollback_ts is not None:
            self.rollback_ts.free()
            self.rollback_ts = None
        self.empty()
        self.close_db()
        self.close_sdb()
        self.set_score(None)
        self._running_ref = None
        self._notifier = None
        self._solver = None
        if self.config.stats:
            self.timers.log_stats()
        self.nrefs = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.free()

    def clean(self):
        """Drop per-element scratch state; elements and problems are kept."""
        for te in self._elements:
            te.reset_scratch()
            te.fs_touched.clear()
            te.handle = None
        self.suggests = []
        self.dsi.reset()
        self._invalidate()

    def empty(self):
        """Remove all elements (and their problems) from the set."""
        self.clean()
        self._elements.clear()
        self.problems.clear()
        self._goal = Goal.UNKNOWN

    def _invalidate(self):
        self._resolved = False
        self._graph = None
        self.unordered = []
        self.dropped_edges = []

    # =========================================================================
    # Elements
    # =========================================================================

    def n_elements(self) -> int:
        return len(self._elements)

    def element(self, ix: int) -> Optional[TransactionElement]:
        return self._elements.get(ix)

    def iter_elements(self, te_type: Optional[ElementType] = None) -> Iterator[TransactionElement]:
        for te in list(self._elements):
            if te_type is None or te.type & te_type:
                yield te

    @property
    def num_added(self) -> int:
        return sum(1 for te in self._elements if te.is_added)

    @property
    def num_removed(self) -> int:
        return sum(1 for te in self._elements if te.is_removed)

    def get_keys(self) -> List[Any]:
        """Caller keys of the elements, in transaction order."""
        return [te.key for te in self._elements]

    # =========================================================================
    # Databases
    # =========================================================================

    def _db_path(self) -> Path:
        if self.config.db_path is not None:
            return self.config.db_path
        return get_db_path(self._root_dir)

    def open_db(self, mode: str = 'r') -> int:
        """Open the install database. Returns 0 on success, 1 on error."""
        if self._rdb is not None and self._rdb.is_open:
            if self._rdb.mode == mode or mode == 'r':
                return 0
        if self._rdb is None:
            self._rdb = PackageDatabase(self._db_path())
        try:
            self._rdb.open(mode)
        except _DB_ERRORS as e:
            logger.error(f"Cannot open package database {self._rdb.db_path} ({mode}): {e}")
            return 1
        self._dbmode = mode
        return 0

    def close_db(self) -> int:
        if self._rdb is not None:
            self._rdb.close()
            self._rdb = None
        return 0

    def init_db(self, mode: str = 'rw') -> int:
        """Create an empty install database."""
        db = PackageDatabase(self._db_path())
        try:
            db.init(mode)
        except _DB_ERRORS as e:
            logger.error(f"Cannot create package database {db.db_path}: {e}")
            return 1
        self.close_db()
        self._rdb = db
        self._dbmode = mode
        return 0

    def rebuild_db(self) -> int:
        if self.open_db('rw') != 0:
            return 1
        try:
            self._rdb.rebuild()
        except _DB_ERRORS as e:
            logger.error(f"Cannot rebuild package database: {e}")
            return 1
        return 0

    def verify_db(self) -> int:
        if self.open_db(self._dbmode) != 0:
            return 1
        try:
            return 0 if self._rdb.verify() else 1
        except _DB_ERRORS as e:
            logger.error(f"Cannot verify package database: {e}")
            return 1

    def init_iterator(self, tag: str = 'packages', key: Any = None) -> Optional[Iterator[dict]]:
        """Iterate over installed headers by index tag, None on error."""
        rdb = self.get_rdb()
        if rdb is None:
            return None
        try:
            return iter(list(rdb.iterate(tag, key)))
        except (ValueError,) + _DB_ERRORS as e:
            logger.error(f"Cannot iterate package database by {tag}: {e}")
            return None

    def get_rdb(self, write: bool = False) -> Optional[PackageDatabase]:
        """Install database, opened on demand. None if it can't be opened."""
        mode = 'rw' if write else self._dbmode
        if self._rdb is not None and self._rdb.is_open and (not write or self._rdb.mode == 'rw'):
            return self._rdb
        if self.open_db(mode) != 0:
            return None
        return self._rdb

    def open_sdb(self, mode: str = 'r') -> int:
        """Open the solve database. Returns 0 on success, 1 on error."""
        if self._sdb is not None and self._sdb.is_open:
            return 0
        path = self.config.solve_db_path
        if path is None:
            logger.error("No solve database configured")
            return 1
        sdb = PackageDatabase(path)
        try:
            sdb.open(mode)
        except _DB_ERRORS as e:
            logger.error(f"Cannot open solve database {path}: {e}")
            return 1
        self._sdb = sdb
        self._sdbmode = mode
        return 0

    def close_sdb(self) -> int:
        if self._sdb is not None:
            self._sdb.close()
            self._sdb = None
        return 0

    def get_sdb(self) -> Optional[PackageDatabase]:
        if self._sdb is None and self.config.solve_db_path is not None:
            self.open_sdb(self._sdbmode)
        return self._sdb

    # =========================================================================
    # Notification
    # =========================================================================

    def set_notifier(self, notifier: Optional[Notifier]) -> Optional[Notifier]:
        old = self._notifier
        self._notifier = notifier
        return old

    def notify(self, te: Optional[TransactionElement], what: CallbackType,
               amount: int, total: int) -> Any:
        if self._notifier is None:
            return None
        return self._notifier.notify(self, te, what, amount, total)

    # =========================================================================
    # Rollback scoring
    # =========================================================================

    @property
    def score(self) -> Optional[ScoreTracker]:
        return self._score

    def set_score(self, score: Optional[ScoreTracker]):
        """Replace the score tracker, dropping the reference to the old one."""
        if self._score is not None and self._score is not score:
            score_free(self._score)
        self._score = score

    @property
    def running_transaction(self) -> Optional['TransactionSet']:
        return self._running_ref() if self._running_ref is not None else None

    def set_running_transaction(self, ts: Optional['TransactionSet']):
        self._running_ref = weakref.ref(ts) if ts is not None else None

    # =========================================================================
    # Timers
    # =========================================================================

    def op(self, opx: OpX) -> OperationTimer:
        return self.timers.op(opx)

    # =========================================================================
    # Accessors (setters return the previous value)
    # =========================================================================

    def get_type(self) -> TransactionType:
        return self._type

    def set_type(self, ts_type: TransactionType) -> TransactionType:
        old = self._type
        self._type = TransactionType(ts_type)
        return old

    def get_goal(self) -> Goal:
        return self._goal

    def set_goal(self, goal: Goal) -> Goal:
        old = self._goal
        self._goal = Goal(goal)
        return old

    def get_flags(self) -> TransFlags:
        return self._trans_flags

    def set_flags(self, flags: TransFlags) -> TransFlags:
        old = self._trans_flags
        self._trans_flags = TransFlags(flags)
        return old

    def get_vsflags(self) -> VSFlags:
        return self._vsflags

    def set_vsflags(self, vsflags: VSFlags) -> VSFlags:
        old = self._vsflags
        self._vsflags = VSFlags(vsflags)
        return old

    def get_ignore_set(self) -> ProbFilter:
        return self._ignore_set

    def get_dbmode(self) -> str:
        return self._dbmode

    def set_dbmode(self, mode: str) -> str:
        old = self._dbmode
        self._dbmode = mode
        return old

    def get_tid(self) -> int:
        return self.tid

    def set_tid(self, tid: int) -> int:
        old = self.tid
        self.tid = tid
        return old

    def get_root_dir(self) -> str:
        return self._root_dir

    def set_root_dir(self, root_dir: Optional[str]) -> str:
        """Set the install root; None or '' means '/'. Trailing '/' is kept."""
        old = self._root_dir
        root_dir = root_dir or '/'
        if not root_dir.endswith('/'):
            root_dir += '/'
        self._root_dir = root_dir
        return old

    def get_curr_dir(self) -> Optional[str]:
        return self._curr_dir

    def set_curr_dir(self, curr_dir: Optional[str]) -> Optional[str]:
        old = self._curr_dir
        self._curr_dir = curr_dir
        return old

    def get_chroot_done(self) -> bool:
        return self._chroot_done

    def set_chroot_done(self, done: bool) -> bool:
        old = self._chroot_done
        self._chroot_done = bool(done)
        return old

    def get_script_fd(self):
        return self._script_fd

    def set_script_fd(self, fd):
        old = self._script_fd
        self._script_fd = fd
        return old

    def get_spec(self):
        return self._spec

    def set_spec(self, spec):
        old = self._spec
        self._spec = spec
        return old

    def get_relocate_element(self) -> Optional[TransactionElement]:
        return self._relocate_element

    def set_relocate_element(self, te: Optional[TransactionElement]) -> Optional[TransactionElement]:
        old = self._relocate_element
        self._relocate_element = te
        return old

    def get_color(self) -> int:
        return self._color

    def set_color(self, color: int) -> int:
        old = self._color
        self._color = color
        return old

    def get_pref_color(self) -> int:
        return self._prefcolor

    def set_pref_color(self, color: int) -> int:
        old = self._prefcolor
        self._prefcolor = color
        return old

    def get_selinux_enabled(self) -> bool:
        return self._selinux_enabled

    def __repr__(self):
        return (f"<TransactionSet {self._type.name.lower()} tid={self.tid} "
                f"added={self.num_added} removed={self.num_removed}>")

