"""Dependency checking of a transaction set."""

import logging
import sqlite3
import warnings
from typing import Any, Dict, List, Mapping, Optional

from ..database import PackageDatabase
from ..element import Dependency, TransactionElement
from ..flags import AdmitResult, ElementType, TransFlags
from ..problems import ProblemType
from ..rpm import get_nevr, get_nevra
from ..solver import SolveResult, Solver, pick_best
from ..timers import OpX

logger = logging.getLogger(__name__)


class CheckMixin:
    """Mixin providing check(), the solve callback and suggestions.

    Requires:
        - self._elements, self.problems, self.timers, self.config
        - self._solver, self._solve_data, self._trans_flags, self._color
        - self.get_rdb(), self.add_install_element()
    """

    # =========================================================================
    # In-transaction resolution
    # =========================================================================

    def _providers(self, dep: Dependency, te_type: ElementType,
                   exclude: Optional[TransactionElement] = None) -> List[TransactionElement]:
        """Elements of a type providing dep, in transaction order."""
        return [te for te in self._elements
                if te.type == te_type and te is not exclude and te.satisfies(dep)]

    def _resolve_in_transaction(self):
        """Record, for each element, which other elements satisfy its requires.

        Installs are matched against installs, erases against erases; this
        is what order() builds its edges from.
        """
        for te in self._elements:
            te.reset_scratch()
            for dep in te.requires:
                if dep.is_rpmlib:
                    continue
                providers = self._providers(dep, te.type, exclude=te)
                if providers:
                    te.resolved.append((dep, providers[0]))
        self._resolved = True

    def _removed_offsets(self) -> set:
        return {te.db_offset for te in self._elements if te.is_removed}

    def _installed_providers(self, rdb: PackageDatabase, dep: Dependency,
                             removed: set) -> List[Dict[str, Any]]:
        return [h for h in rdb.whatprovides(dep) if h['offset'] not in removed]

    def _is_satisfied(self, te: TransactionElement, dep: Dependency,
                      rdb: PackageDatabase, removed: set) -> bool:
        if te.satisfies(dep):
            return True
        if self._providers(dep, ElementType.ADDED, exclude=te):
            return True
        return bool(self._installed_providers(rdb, dep, removed))

    # =========================================================================
    # check()
    # =========================================================================

    def check(self) -> int:
        """Check that every dependency of the transaction is satisfied.

        Unresolved requirements and conflicts are recorded in
        self.problems. Requirements nobody satisfies are handed to the
        solve callback first, which may add providers to the transaction.

        Returns:
            0 when checking completed (problems may have been recorded),
            1 on a database error
        """
        with self.timers.time(OpX.CHECK):
            rdb = self.get_rdb()
            if rdb is None:
                return 1
            try:
                self._check(rdb)
            except (sqlite3.Error, OSError) as e:
                logger.error(f"Dependency check failed: {e}")
                return 1
        return 0

    def _check(self, rdb: PackageDatabase):
        # each check reports the current state only
        self.problems.discard(ProblemType.REQUIRES, ProblemType.CONFLICT)
        self.suggests = []
        self._resolve_in_transaction()

        # the solve callback may append elements while we walk the set
        i = 0
        while i < len(self._elements):
            te = self._elements[i]
            i += 1
            if te.is_added:
                self._check_requires(te, rdb)
                self._check_conflicts(te, rdb)
            else:
                self._check_erase(te, rdb)

        if self.suggests:
            logger.info(f"Suggested packages: {', '.join(get_nevra(h) for h in self.suggests)}")

    def _check_requires(self, te: TransactionElement, rdb: PackageDatabase):
        for dep in te.requires:
            if dep.is_rpmlib:
                continue
            removed = self._removed_offsets()
            if self._is_satisfied(te, dep, rdb, removed):
                continue

            rc = self._call_solver(dep)
            if rc == SolveResult.IGNORE:
                continue
            if rc == SolveResult.RETRY:
                self._resolve_in_transaction()
                if self._is_satisfied(te, dep, rdb, self._removed_offsets()):
                    continue

            logger.debug(f"{te.nevra} requires {dep}: not satisfied")
            self.problems.append(ProblemType.REQUIRES, te.nevr, key=te.key, str1=str(dep))

    def _check_conflicts(self, te: TransactionElement, rdb: PackageDatabase):
        removed = self._removed_offsets()

        for dep in te.conflicts:
            for other in self._providers(dep, ElementType.ADDED, exclude=te):
                self.problems.append(ProblemType.CONFLICT, te.nevr, key=te.key,
                                     alt_nevr=other.nevr, str1=str(dep))
            for h in self._installed_providers(rdb, dep, removed):
                if h['name'] == te.name:
                    continue
                self.problems.append(ProblemType.CONFLICT, te.nevr, key=te.key,
                                     alt_nevr=get_nevr(h), str1=str(dep))

        # installed packages conflicting with what te provides
        seen = set()
        for prov in te.all_provides():
            for h in rdb.iterate('conflicts', prov.name):
                if h['offset'] in removed or h['offset'] in seen or h['name'] == te.name:
                    continue
                installed = TransactionElement.from_header(h, ElementType.REMOVED)
                for dep in installed.conflicts:
                    if te.satisfies(dep):
                        seen.add(h['offset'])
                        self.problems.append(ProblemType.CONFLICT, te.nevr, key=te.key,
                                             alt_nevr=installed.nevr, str1=str(dep))
                        break

    def _check_erase(self, te: TransactionElement, rdb: PackageDatabase):
        """Report installed packages left without a provider by erasing te."""
        removed = self._removed_offsets()
        names = [prov.name for prov in te.all_provides()] + [f.path for f in te.files]
        reported = set()

        for name in dict.fromkeys(names):
            for h in rdb.iterate('requires', name):
                if h['offset'] in removed:
                    continue
                needer = TransactionElement.from_header(h, ElementType.REMOVED)
                for dep in needer.requires:
                    if dep.name != name or not te.satisfies(dep):
                        continue
                    if (h['offset'], str(dep)) in reported:
                        continue
                    if self._providers(dep, ElementType.ADDED):
                        continue
                    if self._installed_providers(rdb, dep, removed):
                        continue
                    reported.add((h['offset'], str(dep)))
                    self.problems.append(ProblemType.REQUIRES, te.nevr, key=te.key,
                                         alt_nevr=needer.nevr, str1=str(dep))

    # =========================================================================
    # Solve callback and suggestions
    # =========================================================================

    def _call_solver(self, dep: Dependency) -> SolveResult:
        if self._solver is None or self._trans_flags & TransFlags.NOSUGGEST:
            return SolveResult.NOT_FOUND
        return SolveResult(self._solver.solve(self, dep, self._solve_data))

    def set_solve_callback(self, solver: Optional[Solver], data: Any = None) -> Optional[Solver]:
        """Install the solver consulted for unresolved requirements.

        Returns:
            The previous solver
        """
        old = self._solver
        self._solver = solver
        self._solve_data = data
        return old

    def add_suggestion(self, header: Mapping) -> bool:
        """Remember a package that would resolve a dependency."""
        if len(self.suggests) >= self.config.max_suggests:
            return False
        nevra = get_nevra(header)
        if any(get_nevra(h) == nevra for h in self.suggests):
            return False
        self.suggests.append(header)
        return True

    def set_available(self, headers: List[Mapping]):
        """Set the universe of packages available() picks from."""
        self.available_packages = list(headers)

    def available(self, dep: Dependency) -> bool:
        """Add the best available provider of dep for install.

        Deprecated: install a solve callback instead.
        """
        warnings.warn("available() is deprecated, use set_solve_callback()",
                      DeprecationWarning, stacklevel=2)
        candidates = []
        for h in self.available_packages:
            try:
                te = TransactionElement.from_header(h, ElementType.ADDED)
            except (KeyError, TypeError, ValueError):
                continue
            if te.satisfies(dep):
                candidates.append(h)

        best = pick_best(candidates, self._color)
        if best is None:
            return False
        return self.add_install_element(best, key=get_nevra(best), upgrade=True) == AdmitResult.OK
