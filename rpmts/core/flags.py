"""Flag sets and enums shared by the transaction engine.

Bitmasks are IntFlag values so they can still be exchanged with code that
speaks raw rpm integers, but callers are expected to use the named
predicates instead of testing bits by hand.
"""

from enum import Enum, IntEnum, IntFlag


class VSFlags(IntFlag):
    """Verify signature flags. A set bit means the check is SKIPPED."""
    DEFAULT = 0
    NOHDRCHK = 1 << 0
    NEEDPAYLOAD = 1 << 1
    # bits 2-7 unused
    NOSHA1HEADER = 1 << 8
    NOMD5HEADER = 1 << 9
    NODSAHEADER = 1 << 10
    NORSAHEADER = 1 << 11
    # bits 12-15 unused
    NOSHA1 = 1 << 16
    NOMD5 = 1 << 17
    NODSA = 1 << 18
    NORSA = 1 << 19

    NODIGESTS = NOSHA1HEADER | NOMD5HEADER | NOSHA1 | NOMD5
    NOSIGNATURES = NODSAHEADER | NORSAHEADER | NODSA | NORSA
    NOHEADER = NOSHA1HEADER | NOMD5HEADER | NODSAHEADER | NORSAHEADER
    NOPAYLOAD = NOSHA1 | NOMD5 | NODSA | NORSA

    def _skips(self, mask: 'VSFlags') -> bool:
        return (self & mask) == mask

    def skips_header_check(self) -> bool:
        return bool(self & VSFlags.NOHDRCHK)

    def needs_payload(self) -> bool:
        return bool(self & VSFlags.NEEDPAYLOAD)

    def skips_header_digest(self) -> bool:
        return self._skips(VSFlags.NOSHA1HEADER | VSFlags.NOMD5HEADER)

    def skips_payload_digest(self) -> bool:
        return self._skips(VSFlags.NOSHA1 | VSFlags.NOMD5)

    def skips_digests(self) -> bool:
        return self._skips(VSFlags.NODIGESTS)

    def skips_header_signature(self) -> bool:
        return self._skips(VSFlags.NODSAHEADER | VSFlags.NORSAHEADER)

    def skips_payload_signature(self) -> bool:
        return self._skips(VSFlags.NODSA | VSFlags.NORSA)

    def skips_signatures(self) -> bool:
        return self._skips(VSFlags.NOSIGNATURES)

    def verifies_everything(self) -> bool:
        """True when no digest or signature check is disabled."""
        return not (self & (VSFlags.NODIGESTS | VSFlags.NOSIGNATURES))


class TransFlags(IntFlag):
    """Bits controlling how a transaction is run."""
    NONE = 0
    TEST = 1 << 0
    BUILD_PROBS = 1 << 1
    NOSCRIPTS = 1 << 2
    JUSTDB = 1 << 3
    NOTRIGGERS = 1 << 4
    NODOCS = 1 << 5
    ALLFILES = 1 << 6
    KEEPOBSOLETE = 1 << 7
    REPACKAGE = 1 << 10
    NOORDER = 1 << 11
    NOSUGGEST = 1 << 12

    def is_test(self) -> bool:
        return bool(self & TransFlags.TEST)

    def just_db(self) -> bool:
        return bool(self & TransFlags.JUSTDB)


class ProbFilter(IntFlag):
    """Problem categories a caller chose to ignore."""
    NONE = 0
    IGNOREOS = 1 << 0
    IGNOREARCH = 1 << 1
    REPLACEPKG = 1 << 2
    FORCERELOCATE = 1 << 3
    REPLACENEWFILES = 1 << 4
    REPLACEOLDFILES = 1 << 5
    OLDPACKAGE = 1 << 6
    DISKSPACE = 1 << 7
    DISKNODES = 1 << 8


class TransactionType(IntEnum):
    """Kind of transaction: a plain one, or a rollback replay."""
    NORMAL = 0
    ROLLBACK = 1 << 0
    AUTOROLLBACK = 1 << 1


class Goal(IntEnum):
    """Transaction goal (mode)."""
    UNKNOWN = 0
    INSTALL = 7
    ERASE = 8


class ElementType(IntFlag):
    ADDED = 1 << 0
    REMOVED = 1 << 1


class FileAction(Enum):
    """Disposition of a single file in a transaction."""
    UNKNOWN = "unknown"
    CREATE = "create"
    BACKUP = "backup"
    SAVE = "save"
    ALTNAME = "altname"
    ERASE = "erase"
    SKIP = "skip"


class AdmitResult(IntEnum):
    """Result of adding an element to a transaction."""
    OK = 0
    IO_ERROR = 1
    NEEDS_CAPS = 2
