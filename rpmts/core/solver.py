"""Dependency solver callbacks.

A solver is consulted by TransactionSet.check() for each requirement that
neither the transaction nor the install database satisfies.
"""

import logging
from enum import IntEnum
from typing import Any, Dict, List, Optional, Protocol

from .element import Dependency
from .rpm import evr_key, get_color, get_nevra

logger = logging.getLogger(__name__)


class SolveResult(IntEnum):
    RETRY = -1       # something was added, resolve the dependency again
    IGNORE = 0       # treat the dependency as satisfied
    NOT_FOUND = 1    # unresolved, record a problem


class Solver(Protocol):
    """Resolves a dependency the transaction could not satisfy."""

    def solve(self, ts, dep: Dependency, data: Any) -> SolveResult:
        ...


def pick_best(headers: List[Dict], color: int = 0) -> Optional[Dict]:
    """Choose a provider: color-compatible first, then newest."""
    if not headers:
        return None
    if color:
        compatible = [h for h in headers if not get_color(h) or get_color(h) & color]
        headers = compatible or headers
    return max(headers, key=evr_key)


class DatabaseSolver:
    """Look up unresolved dependencies in the transaction's solve database.

    The best provider is added to the transaction's suggestions. With
    auto_add the provider is also admitted for install and the check
    is retried.
    """

    def __init__(self, auto_add: bool = False):
        self.auto_add = auto_add

    def solve(self, ts, dep: Dependency, data: Any) -> SolveResult:
        if dep.is_rpmlib:
            return SolveResult.IGNORE

        sdb = ts.get_sdb()
        if sdb is None:
            return SolveResult.NOT_FOUND

        providers = sdb.whatprovides(dep)
        best = pick_best(providers, ts.get_color())
        if best is None:
            logger.debug(f"No provider for {dep} in solve database")
            return SolveResult.NOT_FOUND

        logger.debug(f"Suggesting {get_nevra(best)} for {dep}")
        ts.add_suggestion(best)
        if self.auto_add:
            best = {k: v for k, v in best.items() if k not in ('offset', 'installtid')}
            if ts.add_install_element(best, key=get_nevra(best), upgrade=True) == 0:
                return SolveResult.RETRY
        return SolveResult.NOT_FOUND
