"""Running a transaction set: pre-run problems, execution, autorollback."""

import logging
import os
import sqlite3
from typing import Dict, List, Optional, Protocol

from ..diskspace import DiskSpaceInfo, adj_fs_blocks
from ..element import TransactionElement
from ..flags import FileAction, ProbFilter, TransactionType, TransFlags
from ..notify import CallbackType
from ..problems import ProblemSet, ProblemType
from ..rpm import compare_evr, get_nevr, header_evr
from ..score import score_init
from ..timers import OpX

logger = logging.getLogger(__name__)

# Problems a rollback replay is allowed to ignore
ROLLBACK_IGNORE = (ProbFilter.REPLACEPKG | ProbFilter.OLDPACKAGE |
                   ProbFilter.DISKSPACE | ProbFilter.DISKNODES)


class ElementExecutor(Protocol):
    """Performs the payload side of an element (files, scriptlets)."""

    def install(self, ts, te: TransactionElement) -> bool:
        ...

    def erase(self, ts, te: TransactionElement) -> bool:
        ...


class RunMixin:
    """Mixin providing run(), disk space checks and autorollback.

    Requires:
        - self._elements, self.problems, self.timers, self.config, self.dsi
        - self._trans_flags, self._vsflags, self._type, self.tid, self.executor
        - self._score, self.rollback_ts
        - self.get_rdb(), self.notify(), self.get_root_dir()
    """

    # =========================================================================
    # Disk space
    # =========================================================================

    def init_dsi(self) -> int:
        """Snapshot filesystem usage before accounting file operations."""
        return self.dsi.init()

    def update_dsi(self, dev: int, file_size: int, prev_size: int, fixup_size: int,
                   action: FileAction, te: Optional[TransactionElement] = None
                   ) -> Optional[DiskSpaceInfo]:
        """Account one file operation; the filesystem is remembered on te."""
        dsi = self.dsi.update(dev, file_size, prev_size, fixup_size, action)
        if dsi is not None and te is not None:
            te.fs_touched.add(dev)
        return dsi

    def check_dsi_problems(self, te: TransactionElement) -> int:
        """Record space/inode shortages on filesystems te has touched.

        Returns:
            Number of problems recorded
        """
        count = 0
        for dev in sorted(te.fs_touched):
            dsi = self.dsi.get(dev)
            if dsi is None:
                continue
            if dsi.bavail >= 0 and adj_fs_blocks(dsi.bneeded) > dsi.bavail:
                self.problems.append(
                    ProblemType.DISKSPACE, te.nevr, key=te.key, str1=dsi.mount_point,
                    amount=(adj_fs_blocks(dsi.bneeded) - dsi.bavail) * dsi.bsize)
                count += 1
            if dsi.iavail >= 0 and adj_fs_blocks(dsi.ineeded) > dsi.iavail:
                self.problems.append(
                    ProblemType.DISKNODES, te.nevr, key=te.key, str1=dsi.mount_point,
                    amount=adj_fs_blocks(dsi.ineeded) - dsi.iavail)
                count += 1
        return count

    def _file_device(self, path: str) -> Optional[int]:
        full_path = os.path.join(self.get_root_dir(), path.lstrip('/'))
        return self.dsi.device_for(full_path)

    def _account_disk_space(self):
        if not self.dsi.initialized and self.init_dsi() != 0:
            logger.warning("Disk space is not checked: mount table unavailable")
            return
        self.dsi.clear_needs()
        for te in self._elements:
            te.fs_touched.clear()

        pinned: Dict[int, List[TransactionElement]] = {}
        for te in self._elements:
            if te.is_removed and te.depends_on is not None:
                pinned.setdefault(id(te.depends_on), []).append(te)

        for te in self._elements:
            if te.is_removed and te.depends_on is not None:
                # accounted as replaced files of the install
                continue
            prev_sizes = {f.path: f.size for rte in pinned.get(id(te), []) for f in rte.files}
            paths = set()
            for f in te.files:
                dev = f.dev if f.dev is not None else self._file_device(f.path)
                if dev is None:
                    continue
                prev_size = f.prev_size or prev_sizes.get(f.path, 0)
                self.update_dsi(dev, f.size, prev_size, f.fixup_size, f.action, te)
                paths.add(f.path)
            for rte in pinned.get(id(te), []):
                for f in rte.files:
                    if f.path in paths:
                        continue
                    dev = f.dev if f.dev is not None else self._file_device(f.path)
                    if dev is not None:
                        self.update_dsi(dev, f.size, 0, 0, FileAction.ERASE, te)
            if te.is_added:
                self.check_dsi_problems(te)

    # =========================================================================
    # Pre-run problems
    # =========================================================================

    def _check_installed(self, rdb):
        removed = {te.db_offset for te in self._elements if te.is_removed}
        for te in self._elements:
            if not te.is_added:
                continue
            if te.bad_relocation:
                self.problems.append(ProblemType.BADRELOCATE, te.nevr, key=te.key,
                                     str1=te.relocations[0][0])
            for h in rdb.iterate('name', te.name):
                rc = compare_evr(header_evr(h), te.evr)
                if rc == 0 and h['offset'] not in removed:
                    self.problems.append(ProblemType.PKG_INSTALLED, te.nevr, key=te.key)
                elif rc > 0:
                    self.problems.append(ProblemType.OLDPACKAGE, te.nevr, key=te.key,
                                         alt_nevr=get_nevr(h))

    # =========================================================================
    # run()
    # =========================================================================

    def run(self, ok_probs: Optional[ProblemSet] = None,
            ignore_set: ProbFilter = ProbFilter.NONE) -> int:
        """Run the (ordered) transaction.

        Args:
            ok_probs: Problems the caller accepts
            ignore_set: Problem filter bits

        Returns:
            0 on success, -1 when the database is unavailable, otherwise
            the number of blocking problems or failed elements
        """
        self._ignore_set = ignore_set
        if not len(self._elements):
            return 0

        with self.timers.time(OpX.TOTAL):
            return self._run(ok_probs, ignore_set)

    def _run(self, ok_probs: Optional[ProblemSet], ignore_set: ProbFilter) -> int:
        test = self._trans_flags.is_test()
        rdb = self.get_rdb(write=not test)
        if rdb is None:
            return -1

        mark = len(self.problems)
        try:
            self._check_installed(rdb)
        except sqlite3.Error as e:
            logger.error(f"Cannot check installed packages: {e}")
            return -1
        with self.timers.time(OpX.FINGERPRINT):
            self._account_disk_space()

        nproblems = self.problems.count_unfiltered(ignore_set, ok_probs, start=mark)
        if nproblems:
            for problem in list(self.problems)[mark:]:
                if not problem.is_filtered(ignore_set):
                    logger.error(str(problem))
            return nproblems
        if self._trans_flags & TransFlags.BUILD_PROBS:
            return 0

        if (self.config.autorollback and self._type == TransactionType.NORMAL
                and not test and self.rollback_ts is None):
            self._prepare_rollback()

        total = len(self._elements)
        self.notify(None, CallbackType.TRANS_START, 0, total)
        failed = 0
        for i, te in enumerate(list(self._elements)):
            te.vsflags = self._vsflags
            ok = self._run_element(rdb, te, test)
            self.notify(None, CallbackType.TRANS_PROGRESS, i + 1, total)
            if not ok:
                te.failed = True
                failed += 1
                logger.error(f"{'install' if te.is_added else 'erase'} of {te.nevra} failed")
                if self.rollback_ts is not None:
                    break
        self.notify(None, CallbackType.TRANS_STOP, total, total)

        if failed and self.rollback_ts is not None:
            self._autorollback(rdb)
        return failed

    def _run_element(self, rdb, te: TransactionElement, test: bool) -> bool:
        size = int((te.header or {}).get('size') or 0)
        ok = True

        if te.is_added:
            te.handle = self.notify(te, CallbackType.INST_OPEN_FILE, 0, size)
            self.notify(te, CallbackType.INST_START, 0, size)
            with self.timers.time(OpX.INSTALL, size):
                if self.executor is not None and not test and not self._trans_flags.just_db():
                    ok = self.executor.install(self, te)
            if ok and not test:
                with self.timers.time(OpX.DBADD):
                    try:
                        te.db_offset = rdb.add_header(te.header, self.tid)
                    except sqlite3.Error as e:
                        logger.error(f"Cannot add {te.nevra} to the database: {e}")
                        ok = False
            self.notify(te, CallbackType.INST_PROGRESS, size, size)
            self.notify(te, CallbackType.INST_CLOSE_FILE, size, size)
            te.handle = None
        else:
            nfiles = len(te.files)
            self.notify(te, CallbackType.UNINST_START, 0, nfiles)
            with self.timers.time(OpX.ERASE):
                if self.executor is not None and not test and not self._trans_flags.just_db():
                    ok = self.executor.erase(self, te)
            if ok and not test:
                with self.timers.time(OpX.DBREMOVE):
                    try:
                        rdb.remove_header(te.db_offset)
                    except sqlite3.Error as e:
                        logger.error(f"Cannot remove {te.nevra} from the database: {e}")
                        ok = False
            self.notify(te, CallbackType.UNINST_STOP, nfiles, nfiles)

        if ok and not test:
            self._score_update(te)
        return ok

    # =========================================================================
    # Autorollback
    # =========================================================================

    def _score_update(self, te: TransactionElement):
        if self._score is None or not self.config.autorollback:
            return
        if self._type != TransactionType.NORMAL:
            return
        entry = self._score.get_entry(te.name)
        if entry is None:
            return
        if te.is_added:
            entry.installed = True
        else:
            entry.erased = True

    def _prepare_rollback(self):
        rollback = type(self).create(self.config)
        rollback.set_type(TransactionType.AUTOROLLBACK)
        rollback.set_notifier(self._notifier)
        rollback.executor = self.executor
        score_init(self, rollback)
        self.rollback_ts = rollback
        logger.debug(f"Prepared autorollback for transaction {self.tid}")

    def _autorollback(self, rdb) -> int:
        """Undo what the failed transaction managed to do."""
        rollback = self.rollback_ts
        logger.warning(f"Rolling back transaction {self.tid}")

        for entry in self._score:
            if entry.installed:
                for h in rdb.iterate('name', entry.name):
                    if h.get('installtid') == self.tid:
                        rollback.add_erase_element(h, h['offset'])
            if entry.erased:
                for te in self._elements:
                    if te.is_removed and te.name == entry.name and not te.failed:
                        rollback.add_install_element(te.header, key=te.key)

        rollback.order()
        rc = rollback.run(ignore_set=ROLLBACK_IGNORE)
        if rc:
            logger.error(f"Autorollback of transaction {self.tid} failed ({rc})")
        return rc
