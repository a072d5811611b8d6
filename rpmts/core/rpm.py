"""
RPM utilities for rpmts.

Provides version comparison and package identity helpers working on
header mappings (as returned by read_rpm_header() or PackageDatabase).
"""

import functools
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# rpmlib() features this engine satisfies internally
RPMLIB_FEATURES = frozenset([
    'rpmlib(VersionedDependencies)',
    'rpmlib(CompressedFileNames)',
    'rpmlib(PayloadFilesHavePrefix)',
    'rpmlib(PayloadIsBzip2)',
    'rpmlib(PayloadIsLzma)',
    'rpmlib(PayloadIsXz)',
    'rpmlib(PayloadIsZstd)',
    'rpmlib(PartialHardlinkSets)',
    'rpmlib(ScriptletInterpreterArgs)',
    'rpmlib(ExplicitPackageProvide)',
    'rpmlib(HeaderLoadSortsTags)',
    'rpmlib(ConcurrentAccess)',
    'rpmlib(FileDigests)',
    'rpmlib(RichDependencies)',
])

_SEGMENT_RE = re.compile(r'(~|\^|\d+|[a-zA-Z]+)')


def rpmvercmp(a: str, b: str) -> int:
    """Compare two version (or release) strings the way rpm does.

    Numeric segments are newer than alphabetic ones, leading zeros are
    ignored, '~' sorts before anything (even the end of the string) and
    '^' sorts after the end of the string but before any other segment.

    Returns:
        -1, 0 or 1
    """
    if a == b:
        return 0
    sa = _SEGMENT_RE.findall(a or '')
    sb = _SEGMENT_RE.findall(b or '')

    while sa or sb:
        x = sa.pop(0) if sa else None
        y = sb.pop(0) if sb else None

        if x == '~' or y == '~':
            if x != '~':
                return 1
            if y != '~':
                return -1
            continue

        if x == '^' or y == '^':
            if x is None:
                return -1
            if y is None:
                return 1
            if x != '^':
                return 1
            if y != '^':
                return -1
            continue

        if x is None:
            return -1
        if y is None:
            return 1

        if x.isdigit() != y.isdigit():
            return 1 if x.isdigit() else -1
        if x.isdigit():
            ix, iy = int(x), int(y)
            if ix != iy:
                return 1 if ix > iy else -1
        elif x != y:
            return 1 if x > y else -1
    return 0


def parse_evr(evr: str) -> Tuple[int, str, str]:
    """Split "[epoch:]version[-release]" into its parts."""
    epoch = 0
    if ':' in evr:
        e, evr = evr.split(':', 1)
        epoch = int(e) if e.isdigit() else 0
    if '-' in evr:
        version, release = evr.rsplit('-', 1)
    else:
        version, release = evr, ''
    return epoch, version, release


def compare_evr(e1: Tuple[int, str, str], e2: Tuple[int, str, str]) -> int:
    """Compare (epoch, version, release) tuples.

    An empty release on either side matches any release.
    """
    epoch1, v1, r1 = e1
    epoch2, v2, r2 = e2
    if (epoch1 or 0) != (epoch2 or 0):
        return 1 if (epoch1 or 0) > (epoch2 or 0) else -1
    rc = rpmvercmp(v1, v2)
    if rc or not r1 or not r2:
        return rc
    return rpmvercmp(r1, r2)


def header_evr(hdr: Mapping) -> Tuple[int, str, str]:
    return (int(hdr.get('epoch') or 0), hdr.get('version') or '', hdr.get('release') or '')


def compare_headers(h1: Mapping, h2: Mapping) -> int:
    """Compare the EVR of two headers."""
    return compare_evr(header_evr(h1), header_evr(h2))


# Sortable key, e.g. headers.sort(key=evr_key, reverse=True) for newest first
evr_key = functools.cmp_to_key(compare_headers)


def format_evr(epoch: int, version: str, release: str) -> str:
    evr = f"{epoch}:{version}" if epoch else version
    if release:
        evr = f"{evr}-{release}"
    return evr


def get_nevr(hdr: Mapping) -> str:
    """Return name-[epoch:]version-release of a header."""
    epoch, version, release = header_evr(hdr)
    return f"{hdr['name']}-{format_evr(epoch, version, release)}"


def get_nevra(hdr: Mapping) -> str:
    """Return name-[epoch:]version-release.arch of a header."""
    nevr = get_nevr(hdr)
    arch = hdr.get('arch')
    return f"{nevr}.{arch}" if arch else nevr


def get_color(hdr: Mapping) -> int:
    """Return the package color: OR of its file colors, low nibble only."""
    if hdr.get('color') is not None:
        return int(hdr['color']) & 0x0f
    color = 0
    for f in hdr.get('files') or []:
        if isinstance(f, Mapping):
            color |= int(f.get('color') or 0)
    return color & 0x0f


def parse_nevra(nevra: str) -> Tuple[str, str, str, str]:
    """Parse a NEVRA string into (name, [epoch:]version, release, arch)."""
    parts = nevra.rsplit('.', 1)
    if len(parts) == 2:
        arch = parts[1]
        name_ver_rel = parts[0]
    else:
        arch = 'noarch'
        name_ver_rel = nevra

    parts = name_ver_rel.rsplit('-', 2)
    if len(parts) >= 3:
        return parts[0], parts[1], parts[2], arch
    if len(parts) == 2:
        return parts[0], parts[1], '', arch
    return name_ver_rel, '', '', arch


def read_rpm_header(rpm_path: Path) -> Optional[Dict[str, Any]]:
    """Read metadata from a local RPM file.

    Signature and digest checks are left to the caller's verification
    policy, so only the header is loaded here.

    Args:
        rpm_path: Path to the RPM file

    Returns:
        Header mapping, or None if reading failed.
        Keys: name, version, release, epoch, arch, requires, provides,
              conflicts, obsoletes, files, prefixes
    """
    import rpm

    path = Path(rpm_path)
    if not path.exists():
        return None

    try:
        ts = rpm.TransactionSet()
        ts.setVSFlags(rpm._RPMVSF_NOSIGNATURES | rpm._RPMVSF_NODIGESTS)

        fd = os.open(str(path), os.O_RDONLY)
        try:
            hdr = ts.hdrFromFdno(fd)
        finally:
            os.close(fd)

        prereq_mask = getattr(rpm, "RPMSENSE_PREREQ", 0)

        def get_versioned_deps(name_tag, version_tag, flags_tag) -> List[str]:
            """Combine name, version and flags into "name op version"."""
            names = hdr[name_tag] or []
            versions = hdr[version_tag] or []
            flags_list = hdr[flags_tag] or []

            result = []
            for i, dep_name in enumerate(names):
                if not dep_name:
                    continue
                ver = versions[i] if i < len(versions) else ''
                flags = flags_list[i] if i < len(flags_list) else 0

                op = ''
                if ver and flags:
                    if flags & rpm.RPMSENSE_LESS:
                        op += '<'
                    if flags & rpm.RPMSENSE_GREATER:
                        op += '>'
                    if flags & rpm.RPMSENSE_EQUAL:
                        op += '='
                prereq = bool(flags & prereq_mask)
                entry = f"{dep_name} {op} {ver}" if op else dep_name
                result.append(f"{entry}[*]" if prereq else entry)
            return result

        filenames = hdr[rpm.RPMTAG_FILENAMES] or []
        filesizes = hdr[rpm.RPMTAG_FILESIZES] or []
        filecolors = hdr[rpm.RPMTAG_FILECOLORS] or []
        files = []
        for i, fn in enumerate(filenames):
            files.append({
                'path': fn,
                'size': filesizes[i] if i < len(filesizes) else 0,
                'color': filecolors[i] if i < len(filecolors) else 0,
            })

        return {
            'name': hdr[rpm.RPMTAG_NAME],
            'version': hdr[rpm.RPMTAG_VERSION],
            'release': hdr[rpm.RPMTAG_RELEASE],
            'epoch': hdr[rpm.RPMTAG_EPOCH] or 0,
            'arch': hdr[rpm.RPMTAG_ARCH],
            'size': hdr[rpm.RPMTAG_SIZE] or 0,
            'path': str(path.resolve()),
            'requires': get_versioned_deps(rpm.RPMTAG_REQUIRENAME, rpm.RPMTAG_REQUIREVERSION, rpm.RPMTAG_REQUIREFLAGS),
            'provides': get_versioned_deps(rpm.RPMTAG_PROVIDENAME, rpm.RPMTAG_PROVIDEVERSION, rpm.RPMTAG_PROVIDEFLAGS),
            'conflicts': get_versioned_deps(rpm.RPMTAG_CONFLICTNAME, rpm.RPMTAG_CONFLICTVERSION, rpm.RPMTAG_CONFLICTFLAGS),
            'obsoletes': get_versioned_deps(rpm.RPMTAG_OBSOLETENAME, rpm.RPMTAG_OBSOLETEVERSION, rpm.RPMTAG_OBSOLETEFLAGS),
            'files': files,
            'prefixes': list(hdr[rpm.RPMTAG_PREFIXES] or []),
        }
    except (rpm.error, OSError) as e:
        logger.warning(f"Failed to read header from {path}: {e}")
        return None
