"""Transaction elements and their dependency sets."""

import re
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Mapping, Optional, Set, Tuple

from .flags import ElementType, FileAction, VSFlags
from .rpm import compare_evr, format_evr, get_color, parse_evr

# Marker for a dependency needed by a scriptlet (install-time prerequisite)
PREREQ_MARK = '[*]'

_BRACKET_DEP_RE = re.compile(r'^(.+?)\[([<>=!]+)\s*(.+?)\]$')
_SPACED_DEP_RE = re.compile(r'^(\S+)\s+([<>=!]+)\s+(\S+)$')
_INLINE_DEP_RE = re.compile(r'^(.+?)([<>=!]+)(.+)$')


def parse_dependency(dep: str) -> Tuple[str, str, str]:
    """Parse a dependency string with optional version constraint.

    Args:
        dep: String like "libfoo >= 1.0", "libfoo>=1.0" or "bar[>= 2.0]"
             or just "baz"

    Returns:
        Tuple of (name, operator, version)
    """
    dep = dep.replace(PREREQ_MARK, '').strip()

    match = _BRACKET_DEP_RE.match(dep)
    if match:
        return match.group(1), match.group(2), match.group(3)

    match = _SPACED_DEP_RE.match(dep)
    if match:
        return match.group(1), match.group(2), match.group(3)

    match = _INLINE_DEP_RE.match(dep)
    if match:
        return match.group(1).strip(), match.group(2), match.group(3).strip()

    return dep, '', ''


@dataclass(frozen=True)
class Dependency:
    """A single Requires/Provides/Conflicts/Obsoletes entry."""
    name: str
    op: str = ''
    evr: str = ''
    prereq: bool = False

    @classmethod
    def parse(cls, dep: str) -> 'Dependency':
        name, op, evr = parse_dependency(dep)
        if op == '==':
            op = '='
        return cls(name, op, evr, prereq=PREREQ_MARK in dep)

    @property
    def is_rpmlib(self) -> bool:
        return self.name.startswith('rpmlib(')

    @property
    def is_file(self) -> bool:
        return self.name.startswith('/')

    def overlaps(self, other: 'Dependency') -> bool:
        """Check whether two dependency ranges intersect.

        Unversioned entries on either side match any version.
        """
        if self.name != other.name:
            return False
        if not (self.op and self.evr and other.op and other.evr):
            return True

        sense = compare_evr(parse_evr(self.evr), parse_evr(other.evr))
        if sense < 0:
            return '>' in self.op or '<' in other.op
        if sense > 0:
            return '<' in self.op or '>' in other.op
        return (('=' in self.op and '=' in other.op) or
                ('<' in self.op and '<' in other.op) or
                ('>' in self.op and '>' in other.op))

    def __str__(self):
        if self.op and self.evr:
            return f"{self.name} {self.op} {self.evr}"
        return self.name


@dataclass
class FileInfo:
    """One file of an element, as seen by disk space accounting."""
    path: str
    size: int = 0
    prev_size: int = 0
    fixup_size: int = 0
    action: FileAction = FileAction.CREATE
    dev: Optional[int] = None
    color: int = 0

    @classmethod
    def from_mapping(cls, data: Any, default_action: FileAction) -> 'FileInfo':
        if isinstance(data, str):
            return cls(path=data, action=default_action)
        action = data.get('action', default_action)
        if isinstance(action, str):
            action = FileAction(action)
        return cls(
            path=data['path'],
            size=int(data.get('size') or 0),
            prev_size=int(data.get('prev_size') or 0),
            fixup_size=int(data.get('fixup_size') or 0),
            action=action,
            dev=data.get('dev'),
            color=int(data.get('color') or 0),
        )


def _deps(hdr: Mapping, tag: str) -> List[Dependency]:
    return [Dependency.parse(d) for d in hdr.get(tag) or [] if d]


@dataclass(eq=False)
class TransactionElement:
    """A single install or erase operation in a transaction."""
    type: ElementType
    name: str
    epoch: int = 0
    version: str = ''
    release: str = ''
    arch: str = ''
    color: int = 0
    key: Any = None
    header: Optional[Mapping] = None
    requires: List[Dependency] = field(default_factory=list)
    provides: List[Dependency] = field(default_factory=list)
    conflicts: List[Dependency] = field(default_factory=list)
    obsoletes: List[Dependency] = field(default_factory=list)
    files: List[FileInfo] = field(default_factory=list)
    db_offset: Optional[int] = None
    upgrade: bool = False
    # install element this erase accompanies (upgrade/obsolete replacement)
    depends_on: Optional['TransactionElement'] = None
    relocations: List[Tuple[str, str]] = field(default_factory=list)
    bad_relocation: bool = False

    # Scratch state filled by check() and order()
    resolved: List[Tuple[Dependency, 'TransactionElement']] = field(default_factory=list)
    depth: int = 0
    tree: int = -1
    npreds: int = 0
    fs_touched: Set[int] = field(default_factory=set)

    # Execution state
    handle: Any = None
    vsflags: Optional[VSFlags] = None
    failed: bool = False

    @classmethod
    def from_header(cls, hdr: Mapping, te_type: ElementType, key: Any = None,
                    db_offset: Optional[int] = None) -> 'TransactionElement':
        """Build an element from a header mapping.

        Raises:
            KeyError, TypeError, ValueError: header is malformed
        """
        if not hdr['name'] or not hdr['version']:
            raise ValueError("header has no name or version")
        file_action = FileAction.ERASE if te_type == ElementType.REMOVED else FileAction.CREATE
        return cls(
            type=te_type,
            name=hdr['name'],
            epoch=int(hdr.get('epoch') or 0),
            version=hdr['version'],
            release=hdr.get('release') or '',
            arch=hdr.get('arch') or '',
            color=get_color(hdr),
            key=key,
            header=hdr,
            requires=_deps(hdr, 'requires'),
            provides=_deps(hdr, 'provides'),
            conflicts=_deps(hdr, 'conflicts'),
            obsoletes=_deps(hdr, 'obsoletes'),
            files=[FileInfo.from_mapping(f, file_action) for f in hdr.get('files') or []],
            db_offset=db_offset if db_offset is not None else hdr.get('offset'),
        )

    @property
    def is_added(self) -> bool:
        return self.type == ElementType.ADDED

    @property
    def is_removed(self) -> bool:
        return self.type == ElementType.REMOVED

    @property
    def evr(self) -> Tuple[int, str, str]:
        return (self.epoch, self.version, self.release)

    @property
    def evr_string(self) -> str:
        return format_evr(self.epoch, self.version, self.release)

    @property
    def nevr(self) -> str:
        return f"{self.name}-{self.evr_string}"

    @property
    def nevra(self) -> str:
        return f"{self.nevr}.{self.arch}" if self.arch else self.nevr

    def self_provide(self) -> Dependency:
        return Dependency(self.name, '=', self.evr_string)

    def all_provides(self) -> Iterator[Dependency]:
        yield self.self_provide()
        yield from self.provides

    def satisfies(self, dep: Dependency) -> bool:
        """Check whether this element provides a dependency."""
        if dep.is_file:
            return any(f.path == dep.name for f in self.files)
        return any(prov.overlaps(dep) for prov in self.all_provides())

    def reset_scratch(self):
        self.resolved = []
        self.depth = 0
        self.tree = -1
        self.npreds = 0

    def __repr__(self):
        kind = 'install' if self.is_added else 'erase'
        return f"<TransactionElement {kind} {self.nevra}>"


class ElementList:
    """Ordered, growable sequence of transaction elements.

    Only logical operations are exposed; storage growth is left to the
    underlying list.
    """

    def __init__(self, elements=None):
        self._items: List[TransactionElement] = list(elements or [])

    def append(self, te: TransactionElement):
        self._items.append(te)

    def insert(self, index: int, te: TransactionElement):
        self._items.insert(index, te)

    def get(self, index: int) -> Optional[TransactionElement]:
        if 0 <= index < len(self._items):
            return self._items[index]
        return None

    def index(self, te: TransactionElement) -> int:
        for i, item in enumerate(self._items):
            if item is te:
                return i
        return -1

    def replace(self, old: TransactionElement, new: TransactionElement) -> bool:
        i = self.index(old)
        if i < 0:
            return False
        self._items[i] = new
        return True

    def remove(self, te: TransactionElement) -> bool:
        i = self.index(te)
        if i < 0:
            return False
        del self._items[i]
        return True

    def clear(self):
        self._items.clear()

    def find(self, name: str, te_type: Optional[ElementType] = None) -> Optional[TransactionElement]:
        for te in self._items:
            if te.name == name and (te_type is None or te.type == te_type):
                return te
        return None

    def __getitem__(self, index):
        return self._items[index]

    def __len__(self):
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def __contains__(self, te):
        return self.index(te) >= 0
