"""Rollback scoring shared by a running transaction and its rollback.

Both transactions hold a reference to the same ScoreTracker; entries are
only mutated while the running (NORMAL) transaction executes, so replaying
the rollback never counts an operation twice.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .flags import ElementType

logger = logging.getLogger(__name__)


@dataclass
class ScoreEntry:
    """Per-package bookkeeping."""
    name: str
    te_types: ElementType
    installed: bool = False
    erased: bool = False


class ScoreTracker:
    """Ordered collection of score entries with a reference count."""

    def __init__(self):
        self._entries: List[ScoreEntry] = []
        self._by_name: Dict[str, ScoreEntry] = {}
        self.nrefs = 0

    def link(self) -> 'ScoreTracker':
        self.nrefs += 1
        return self

    def add(self, name: str, te_type: ElementType) -> ScoreEntry:
        """Record an element type for a package, creating the entry if needed."""
        entry = self._by_name.get(name)
        if entry is None:
            entry = ScoreEntry(name=name, te_types=te_type)
            self._entries.append(entry)
            self._by_name[name] = entry
        else:
            entry.te_types |= te_type
        return entry

    def get_entry(self, name: str) -> Optional[ScoreEntry]:
        return self._by_name.get(name)

    @property
    def entries(self) -> List[ScoreEntry]:
        return list(self._entries)

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)


def score_free(score: Optional[ScoreTracker]) -> Optional[ScoreTracker]:
    """Drop one reference; the tracker is destroyed when none remain.

    Returns:
        The tracker while references remain, None once destroyed
    """
    if score is None:
        return None
    if score.nrefs <= 0:
        raise RuntimeError("score tracker already freed")
    score.nrefs -= 1
    if score.nrefs > 0:
        return score
    logger.debug(f"Destroying score tracker ({len(score)} entries)")
    score._entries.clear()
    score._by_name.clear()
    return None


def get_entry(score: Optional[ScoreTracker], name: str) -> Optional[ScoreEntry]:
    """Look up an entry by package name; absent tracker or name gives None."""
    if score is None:
        return None
    return score.get_entry(name)


def score_init(running_ts, rollback_ts) -> int:
    """Create a tracker shared by a running transaction and its rollback.

    The tracker gets one entry per package name admitted in the running
    transaction and ends up with a reference count of 2.
    """
    running_ts.set_score(None)
    rollback_ts.set_score(None)

    score = ScoreTracker()
    for te in running_ts.iter_elements():
        score.add(te.name, te.type)

    running_ts.set_score(score.link())
    rollback_ts.set_score(score.link())
    rollback_ts.set_running_transaction(running_ts)
    logger.debug(f"Score tracker initialized with {len(score)} entries")
    return 0
