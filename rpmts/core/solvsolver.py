"""Dependency solver backed by a libsolv pool."""

import logging
from typing import Any, Dict, List, Optional

import solv

from .element import Dependency
from .rpm import parse_evr
from .solver import SolveResult, pick_best

logger = logging.getLogger(__name__)

# Map dependency operators to libsolv relation flags
OP_FLAGS = {
    '>=': solv.REL_GT | solv.REL_EQ,
    '<=': solv.REL_LT | solv.REL_EQ,
    '=': solv.REL_EQ,
    '>': solv.REL_GT,
    '<': solv.REL_LT,
}


def solvable_to_header(s) -> Dict[str, Any]:
    """Convert a libsolv solvable into a header mapping."""
    epoch, version, release = parse_evr(s.evr)

    def deps(keyname) -> List[str]:
        return [str(d) for d in s.lookup_deparray(keyname)]

    return {
        'name': s.name,
        'epoch': epoch,
        'version': version,
        'release': release,
        'arch': s.arch,
        'requires': deps(solv.SOLVABLE_REQUIRES),
        'provides': deps(solv.SOLVABLE_PROVIDES),
        'conflicts': deps(solv.SOLVABLE_CONFLICTS),
        'obsoletes': deps(solv.SOLVABLE_OBSOLETES),
    }


class LibsolvSolver:
    """Find providers of unresolved dependencies in a libsolv pool.

    Only solvables outside the pool's installed repo are considered.
    """

    def __init__(self, pool: 'solv.Pool', auto_add: bool = False):
        self.pool = pool
        self.auto_add = auto_add
        self.pool.createwhatprovides()

    def _to_dep(self, dep: Dependency):
        sdep = self.pool.Dep(dep.name)
        flags = OP_FLAGS.get(dep.op)
        if flags is not None and dep.evr:
            sdep = sdep.Rel(flags, self.pool.Dep(dep.evr))
        return sdep

    def providers(self, dep: Dependency) -> List[Dict[str, Any]]:
        installed = self.pool.installed
        result = []
        for s in self.pool.whatprovides(self._to_dep(dep)):
            if installed is not None and s.repo == installed:
                continue
            result.append(solvable_to_header(s))
        return result

    def solve(self, ts, dep: Dependency, data: Any) -> SolveResult:
        if dep.is_rpmlib:
            return SolveResult.IGNORE

        best: Optional[Dict[str, Any]] = pick_best(self.providers(dep), ts.get_color())
        if best is None:
            return SolveResult.NOT_FOUND

        ts.add_suggestion(best)
        if self.auto_add and ts.add_install_element(best, upgrade=True) == 0:
            return SolveResult.RETRY
        return SolveResult.NOT_FOUND
