"""Element admission: adding install and erase elements."""

import logging
import sqlite3
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ..element import TransactionElement
from ..flags import AdmitResult, ElementType, Goal, TransFlags
from ..rpm import (RPMLIB_FEATURES, compare_evr, get_color, get_nevra, header_evr,
                   read_rpm_header)

logger = logging.getLogger(__name__)


class AdmissionMixin:
    """Mixin providing element admission.

    Requires:
        - self._elements: ElementList of all elements (admission order)
        - self._goal, self._trans_flags, self._color
        - self.get_rdb(): install database or None
        - self._invalidate(): drop cached resolution/order
    """

    def add_install_element(self, header: Mapping, key: Any = None, upgrade: bool = False,
                            relocations: Optional[Sequence[Tuple[str, str]]] = None) -> AdmitResult:
        """Add a package to be installed.

        If a package with the same name is already added, only the newer
        EVR is kept (the older one is replaced in place). With upgrade,
        installed instances of the package and packages it obsoletes are
        queued for erasure right after it.

        Args:
            header: Package header mapping
            key: Opaque caller key (file name, ...)
            upgrade: Replace installed versions
            relocations: (old_prefix, new_prefix) pairs

        Returns:
            AdmitResult.OK, IO_ERROR (bad header, database failure) or
            NEEDS_CAPS (unsupported rpmlib() feature); state is untouched
            unless OK
        """
        try:
            te = TransactionElement.from_header(header, ElementType.ADDED, key=key)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Cannot add {key!r} for install: bad header ({e})")
            return AdmitResult.IO_ERROR

        missing = [str(d) for d in te.requires
                   if d.is_rpmlib and d.name not in RPMLIB_FEATURES]
        if missing:
            logger.warning(f"{te.nevra} needs unsupported capabilities: {', '.join(missing)}")
            return AdmitResult.NEEDS_CAPS

        te.upgrade = upgrade
        if relocations:
            self._relocate(te, relocations)

        existing = self._elements.find(te.name, ElementType.ADDED)
        if existing is not None and compare_evr(existing.evr, te.evr) >= 0:
            logger.debug(f"Not adding {te.nevra}: {existing.nevra} is already added")
            return AdmitResult.OK

        erase_headers: List[Mapping] = []
        if upgrade:
            rdb = self.get_rdb()
            if rdb is None:
                return AdmitResult.IO_ERROR
            try:
                erase_headers = self._find_replaced(rdb, te)
            except (sqlite3.Error, OSError) as e:
                logger.error(f"Database error while adding {te.nevra}: {e}")
                return AdmitResult.IO_ERROR
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Bad installed header while adding {te.nevra}: {e}")
                return AdmitResult.IO_ERROR

        if existing is not None:
            logger.debug(f"Replacing {existing.nevra} with newer {te.nevra}")
            for rte in [r for r in self._elements if r.depends_on is existing]:
                self._elements.remove(rte)
            self._elements.replace(existing, te)
        else:
            self._elements.append(te)

        for h in erase_headers:
            self._add_erase(h, h['offset'], depends_on=te)

        if self._goal == Goal.UNKNOWN:
            self._goal = Goal.INSTALL
        self._invalidate()
        return AdmitResult.OK

    def add_install_file(self, path, key: Any = None, upgrade: bool = False) -> AdmitResult:
        """Read a header from an .rpm file and add it for install."""
        header = read_rpm_header(path)
        if header is None:
            return AdmitResult.IO_ERROR
        return self.add_install_element(header, key=key if key is not None else str(path),
                                        upgrade=upgrade)

    def add_erase_element(self, header: Mapping, db_offset: int,
                          depends_on: Optional[TransactionElement] = None) -> AdmitResult:
        """Add an installed package instance to be erased.

        Args:
            header: Installed package header
            db_offset: Database instance of the header
            depends_on: Install element this erase accompanies (upgrade)
        """
        try:
            TransactionElement.from_header(header, ElementType.REMOVED, db_offset=db_offset)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Cannot add instance {db_offset} for erase: bad header ({e})")
            return AdmitResult.IO_ERROR

        self._add_erase(header, db_offset, depends_on)
        if self._goal == Goal.UNKNOWN:
            self._goal = Goal.ERASE
        self._invalidate()
        return AdmitResult.OK

    def _add_erase(self, header: Mapping, db_offset: int,
                   depends_on: Optional[TransactionElement] = None):
        for rte in self._elements:
            if rte.is_removed and rte.db_offset == db_offset:
                if depends_on is not None and rte.depends_on is None:
                    rte.depends_on = depends_on
                return
        te = TransactionElement.from_header(header, ElementType.REMOVED, db_offset=db_offset)
        te.depends_on = depends_on
        self._elements.append(te)
        logger.debug(f"Added {te.nevra} (instance {db_offset}) for erase"
                     + (f" after {depends_on.nevra}" if depends_on else ""))

    def _find_replaced(self, rdb, te: TransactionElement) -> List[Mapping]:
        """Installed headers an upgrade of te replaces (same name or obsoleted)."""
        replaced = {}
        for h in rdb.iterate('name', te.name):
            if compare_evr(header_evr(h), te.evr) == 0:
                # reinstalling the same version is reported by run()
                continue
            h_color = get_color(h)
            if self._color and te.color and h_color and not (h_color & te.color):
                # a different multilib flavour stays installed
                continue
            replaced[h['offset']] = h

        if not (self._trans_flags & TransFlags.KEEPOBSOLETE):
            for dep in te.obsoletes:
                for h in rdb.iterate('name', dep.name):
                    installed = TransactionElement.from_header(h, ElementType.REMOVED)
                    if installed.self_provide().overlaps(dep):
                        replaced.setdefault(h['offset'], h)

        for h in replaced.values():
            # raises on a malformed installed header before anything is queued
            TransactionElement.from_header(h, ElementType.REMOVED)
            logger.debug(f"{te.nevra} replaces installed {get_nevra(h)}")
        return [replaced[offset] for offset in sorted(replaced)]

    def _relocate(self, te: TransactionElement, relocations: Sequence[Tuple[str, str]]):
        prefixes = (te.header or {}).get('prefixes') or []
        for old, new in relocations:
            if not any(old.rstrip('/') == p.rstrip('/') for p in prefixes):
                te.bad_relocation = True
            old_dir = old.rstrip('/') + '/'
            for f in te.files:
                if f.path.startswith(old_dir):
                    f.path = new.rstrip('/') + '/' + f.path[len(old_dir):]
        te.relocations = list(relocations)
