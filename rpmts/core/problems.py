"""Transaction problem records.

Problems are appended while checking, ordering and running a transaction.
Filtering by the caller's ignore mask only affects what is reported, the
records themselves stay available for inspection.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator, List, Optional

from .flags import ProbFilter


class ProblemType(Enum):
    BADARCH = "badarch"
    BADOS = "bados"
    PKG_INSTALLED = "pkg_installed"
    BADRELOCATE = "badrelocate"
    REQUIRES = "requires"
    CONFLICT = "conflict"
    NEW_FILE_CONFLICT = "new_file_conflict"
    FILE_CONFLICT = "file_conflict"
    OLDPACKAGE = "oldpackage"
    DISKSPACE = "diskspace"
    DISKNODES = "disknodes"
    BADPRETRANS = "badpretrans"


# Filter bit able to suppress each problem type (None = never filtered)
PROBLEM_FILTERS = {
    ProblemType.BADARCH: ProbFilter.IGNOREARCH,
    ProblemType.BADOS: ProbFilter.IGNOREOS,
    ProblemType.PKG_INSTALLED: ProbFilter.REPLACEPKG,
    ProblemType.BADRELOCATE: ProbFilter.FORCERELOCATE,
    ProblemType.REQUIRES: None,
    ProblemType.CONFLICT: None,
    ProblemType.NEW_FILE_CONFLICT: ProbFilter.REPLACENEWFILES,
    ProblemType.FILE_CONFLICT: ProbFilter.REPLACEOLDFILES,
    ProblemType.OLDPACKAGE: ProbFilter.OLDPACKAGE,
    ProblemType.DISKSPACE: ProbFilter.DISKSPACE,
    ProblemType.DISKNODES: ProbFilter.DISKNODES,
    ProblemType.BADPRETRANS: None,
}


@dataclass(frozen=True)
class Problem:
    """A single diagnostic record."""
    type: ProblemType
    pkg_nevr: str
    key: Any = None
    alt_nevr: str = ''
    str1: str = ''
    amount: int = 0

    def is_filtered(self, ignore_set: ProbFilter) -> bool:
        flag = PROBLEM_FILTERS.get(self.type)
        return flag is not None and bool(ignore_set & flag)

    def __str__(self):
        t = self.type
        if t == ProblemType.BADARCH:
            return f"package {self.pkg_nevr} is intended for a {self.str1} architecture"
        if t == ProblemType.BADOS:
            return f"package {self.pkg_nevr} is intended for a {self.str1} operating system"
        if t == ProblemType.PKG_INSTALLED:
            return f"package {self.pkg_nevr} is already installed"
        if t == ProblemType.BADRELOCATE:
            return f"path {self.str1} in package {self.pkg_nevr} is not relocatable"
        if t == ProblemType.REQUIRES:
            if self.alt_nevr:
                return f"{self.str1} is needed by {self.alt_nevr} (removing {self.pkg_nevr})"
            return f"{self.str1} is needed by {self.pkg_nevr}"
        if t == ProblemType.CONFLICT:
            return f"{self.str1} conflicts with {self.alt_nevr} (installing {self.pkg_nevr})"
        if t == ProblemType.NEW_FILE_CONFLICT:
            return (f"file {self.str1} conflicts between attempted installs of "
                    f"{self.pkg_nevr} and {self.alt_nevr}")
        if t == ProblemType.FILE_CONFLICT:
            return (f"file {self.str1} from install of {self.pkg_nevr} conflicts "
                    f"with file from package {self.alt_nevr}")
        if t == ProblemType.OLDPACKAGE:
            return (f"package {self.alt_nevr} (which is newer than {self.pkg_nevr}) "
                    f"is already installed")
        if t == ProblemType.DISKSPACE:
            return (f"installing package {self.pkg_nevr} needs {_format_size(self.amount)} "
                    f"on the {self.str1} filesystem")
        if t == ProblemType.DISKNODES:
            return (f"installing package {self.pkg_nevr} needs {self.amount} inodes "
                    f"on the {self.str1} filesystem")
        if t == ProblemType.BADPRETRANS:
            return f"package {self.pkg_nevr} pre-transaction syscall(s): {self.str1} failed"
        return f"unknown problem with {self.pkg_nevr}"


def _format_size(amount: int) -> str:
    if amount > 1024 * 1024:
        return f"{(amount + 1024 * 1024 - 1) // (1024 * 1024)}MB"
    return f"{(amount + 1023) // 1024}KB"


class ProblemSet:
    """Problems in the order they were recorded."""

    def __init__(self):
        self._problems: List[Problem] = []

    def append(self, ptype: ProblemType, pkg_nevr: str, key: Any = None,
               alt_nevr: str = '', str1: str = '', amount: int = 0) -> Problem:
        problem = Problem(ptype, pkg_nevr, key, alt_nevr, str1, amount)
        self._problems.append(problem)
        return problem

    def extend(self, problems: Iterable[Problem]):
        self._problems.extend(problems)

    def filtered(self, ignore_set: ProbFilter = ProbFilter.NONE) -> List[Problem]:
        """Problems to display once the caller's ignore mask is applied."""
        return [p for p in self._problems if not p.is_filtered(ignore_set)]

    def count_unfiltered(self, ignore_set: ProbFilter = ProbFilter.NONE,
                         ok_probs: Optional['ProblemSet'] = None, start: int = 0) -> int:
        """Count problems that are neither filtered nor explicitly accepted.

        Only problems recorded at or after index start are considered.
        """
        accepted = list(ok_probs) if ok_probs else []
        return sum(1 for p in self._problems[start:]
                   if not p.is_filtered(ignore_set) and p not in accepted)

    def of_type(self, ptype: ProblemType) -> List[Problem]:
        return [p for p in self._problems if p.type == ptype]

    def discard(self, *ptypes: ProblemType) -> int:
        """Drop every problem of the given types. Returns how many went."""
        before = len(self._problems)
        self._problems = [p for p in self._problems if p.type not in ptypes]
        return before - len(self._problems)

    def clear(self):
        self._problems.clear()

    def __len__(self):
        return len(self._problems)

    def __iter__(self) -> Iterator[Problem]:
        return iter(self._problems)

    def __bool__(self):
        return bool(self._problems)
