"""
SQLite package database for rpmts

Stores installed package headers and indexes their names, dependencies
and files so transactions can look up what is installed.
"""

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .element import Dependency, TransactionElement
from .flags import ElementType
from .rpm import get_color, get_nevra

logger = logging.getLogger(__name__)

# Schema version - increment when schema changes
SCHEMA_VERSION = 2

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER PRIMARY KEY
);

-- Installed headers, id is the database offset of the instance
CREATE TABLE IF NOT EXISTS packages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,

    -- NEVRA
    name TEXT NOT NULL,
    epoch INTEGER DEFAULT 0,
    version TEXT NOT NULL,
    release TEXT NOT NULL,
    arch TEXT,
    nevra TEXT NOT NULL,

    color INTEGER DEFAULT 0,
    size INTEGER DEFAULT 0,
    installtid INTEGER,
    installtime INTEGER,

    -- Full header as JSON
    header TEXT NOT NULL
);

-- Dependencies
CREATE TABLE IF NOT EXISTS requires (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pkg_id INTEGER NOT NULL,
    capability TEXT NOT NULL,
    operator TEXT,
    version TEXT,
    prereq INTEGER DEFAULT 0,
    FOREIGN KEY (pkg_id) REFERENCES packages(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS provides (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pkg_id INTEGER NOT NULL,
    capability TEXT NOT NULL,
    operator TEXT,
    version TEXT,
    FOREIGN KEY (pkg_id) REFERENCES packages(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS conflicts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pkg_id INTEGER NOT NULL,
    capability TEXT NOT NULL,
    operator TEXT,
    version TEXT,
    FOREIGN KEY (pkg_id) REFERENCES packages(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS obsoletes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pkg_id INTEGER NOT NULL,
    capability TEXT NOT NULL,
    operator TEXT,
    version TEXT,
    FOREIGN KEY (pkg_id) REFERENCES packages(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pkg_id INTEGER NOT NULL,
    path TEXT NOT NULL,
    size INTEGER DEFAULT 0,
    color INTEGER DEFAULT 0,
    FOREIGN KEY (pkg_id) REFERENCES packages(id) ON DELETE CASCADE
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_pkg_name ON packages(name);
CREATE INDEX IF NOT EXISTS idx_pkg_tid ON packages(installtid);
CREATE INDEX IF NOT EXISTS idx_provides_cap ON provides(capability);
CREATE INDEX IF NOT EXISTS idx_provides_pkg ON provides(pkg_id);
CREATE INDEX IF NOT EXISTS idx_requires_cap ON requires(capability);
CREATE INDEX IF NOT EXISTS idx_requires_pkg ON requires(pkg_id);
CREATE INDEX IF NOT EXISTS idx_conflicts_cap ON conflicts(capability);
CREATE INDEX IF NOT EXISTS idx_obsoletes_cap ON obsoletes(capability);
CREATE INDEX IF NOT EXISTS idx_files_path ON files(path);
"""

# Migrations: dict of from_version -> (to_version, sql_script)
MIGRATIONS = {
    1: (2, """
        -- Migration v1 -> v2: Track install time alongside the transaction id
        ALTER TABLE packages ADD COLUMN installtime INTEGER;
        CREATE INDEX IF NOT EXISTS idx_pkg_tid ON packages(installtid);
    """),
}

DEP_TABLES = ('requires', 'provides', 'conflicts', 'obsoletes')

# Iterator tags
ITERATOR_TAGS = ('packages', 'name', 'provides', 'requires', 'conflicts',
                 'obsoletes', 'files', 'installtid')


class PackageDatabase:
    """SQLite database of installed package headers."""

    def __init__(self, db_path: Path):
        """Remember the database location; nothing is opened yet.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None
        self.mode: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.conn is not None

    def open(self, mode: str = 'r'):
        """Open the database.

        Args:
            mode: 'r' for read-only, 'rw' to allow writes (creates the
                  database if needed)

        Raises:
            sqlite3.Error, OSError: the database can't be opened
        """
        if self.conn is not None:
            if self.mode == mode or mode == 'r':
                return
            self.close()

        if mode == 'rw':
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path))
        else:
            conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)

        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        self.conn = conn
        self.mode = mode
        try:
            if mode == 'rw':
                conn.execute("PRAGMA synchronous=NORMAL")
                self._init_schema()
            else:
                self._check_schema()
        except sqlite3.Error:
            self.close()
            raise
        logger.debug(f"Opened package database {self.db_path} ({mode})")

    def init(self, mode: str = 'rw'):
        """Create an empty database (schema only) and leave it open."""
        self.open('rw')
        if mode != 'rw':
            self.close()
            self.open(mode)

    def close(self):
        """Close database connection."""
        if self.conn is not None:
            self.conn.close()
            self.conn = None
            self.mode = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _init_schema(self):
        """Initialize or migrate database schema."""
        try:
            cursor = self.conn.execute("SELECT version FROM schema_info LIMIT 1")
            row = cursor.fetchone()
            current_version = row[0] if row else 0
        except sqlite3.OperationalError:
            current_version = 0

        if current_version == 0:
            self.conn.executescript(SCHEMA)
            self.conn.execute(
                "INSERT OR REPLACE INTO schema_info (version) VALUES (?)",
                (SCHEMA_VERSION,)
            )
            self.conn.commit()
        elif current_version < SCHEMA_VERSION:
            self._apply_migrations(current_version)
        elif current_version > SCHEMA_VERSION:
            logger.warning(
                f"Database schema version {current_version} is newer than "
                f"supported version {SCHEMA_VERSION}."
            )

    def _check_schema(self):
        cursor = self.conn.execute("SELECT version FROM schema_info LIMIT 1")
        row = cursor.fetchone()
        if not row:
            raise sqlite3.DatabaseError(f"{self.db_path} is not a package database")

    def _apply_migrations(self, from_version: int):
        """Apply all migrations from from_version to SCHEMA_VERSION."""
        version = from_version
        while version < SCHEMA_VERSION:
            if version not in MIGRATIONS:
                raise RuntimeError(f"No migration from database schema v{version}")

            to_version, migration_sql = MIGRATIONS[version]
            logger.info(f"Migrating database schema v{version} -> v{to_version}")
            try:
                self.conn.executescript(migration_sql)
                self.conn.execute("UPDATE schema_info SET version = ?", (to_version,))
                self.conn.commit()
                version = to_version
            except sqlite3.Error as e:
                logger.error(f"Migration v{version} -> v{to_version} failed: {e}")
                raise RuntimeError(f"Database migration failed: {e}")

    def _require_open(self, write: bool = False):
        if self.conn is None:
            raise sqlite3.ProgrammingError("package database is not open")
        if write and self.mode != 'rw':
            raise sqlite3.ProgrammingError("package database is open read-only")

    # =========================================================================
    # Headers
    # =========================================================================

    def add_header(self, header: Mapping, tid: int = 0) -> int:
        """Store a header and index it.

        Args:
            header: Header mapping (name, epoch, version, release, arch, ...)
            tid: Id of the transaction installing it

        Returns:
            Database offset of the new instance
        """
        self._require_open(write=True)

        data = {k: v for k, v in header.items() if k not in ('offset', 'installtid')}
        cursor = self.conn.execute("""
            INSERT INTO packages (name, epoch, version, release, arch, nevra,
                                  color, size, installtid, installtime, header)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (header['name'], int(header.get('epoch') or 0), header['version'],
              header.get('release') or '', header.get('arch') or '',
              get_nevra(header), get_color(header), int(header.get('size') or 0),
              tid, int(time.time()), json.dumps(data, default=str)))
        offset = cursor.lastrowid
        self._index_header(offset, data)
        self.conn.commit()
        return offset

    def _index_header(self, offset: int, header: Mapping):
        for table in DEP_TABLES:
            rows = []
            for dep_str in header.get(table) or []:
                dep = Dependency.parse(dep_str)
                if table == 'requires':
                    rows.append((offset, dep.name, dep.op, dep.evr, int(dep.prereq)))
                else:
                    rows.append((offset, dep.name, dep.op, dep.evr))
            if not rows:
                continue
            if table == 'requires':
                self.conn.executemany(
                    "INSERT INTO requires (pkg_id, capability, operator, version, prereq) "
                    "VALUES (?, ?, ?, ?, ?)", rows)
            else:
                self.conn.executemany(
                    f"INSERT INTO {table} (pkg_id, capability, operator, version) "
                    f"VALUES (?, ?, ?, ?)", rows)

        file_rows = []
        for f in header.get('files') or []:
            if isinstance(f, str):
                file_rows.append((offset, f, 0, 0))
            else:
                file_rows.append((offset, f['path'], int(f.get('size') or 0),
                                  int(f.get('color') or 0)))
        if file_rows:
            self.conn.executemany(
                "INSERT INTO files (pkg_id, path, size, color) VALUES (?, ?, ?, ?)",
                file_rows)

    def remove_header(self, offset: int) -> bool:
        """Remove an installed instance. Returns False if it didn't exist."""
        self._require_open(write=True)
        cursor = self.conn.execute("DELETE FROM packages WHERE id = ?", (offset,))
        self.conn.commit()
        return cursor.rowcount > 0

    def get_header(self, offset: int) -> Optional[Dict[str, Any]]:
        self._require_open()
        cursor = self.conn.execute(
            "SELECT id, installtid, header FROM packages WHERE id = ?", (offset,))
        row = cursor.fetchone()
        return self._row_to_header(row) if row else None

    def count(self) -> int:
        self._require_open()
        return self.conn.execute("SELECT COUNT(*) FROM packages").fetchone()[0]

    @staticmethod
    def _row_to_header(row) -> Dict[str, Any]:
        header = json.loads(row['header'])
        header['offset'] = row['id']
        header['installtid'] = row['installtid']
        return header

    # =========================================================================
    # Iteration
    # =========================================================================

    def iterate(self, tag: str = 'packages', key: Any = None) -> Iterator[Dict[str, Any]]:
        """Iterate over installed headers matching an index key.

        Args:
            tag: One of ITERATOR_TAGS
            key: Index key (name, capability, path, tid, offset); None
                 iterates over every header for 'packages'

        Returns:
            Iterator of header dicts (with 'offset' and 'installtid')
        """
        self._require_open()
        if tag not in ITERATOR_TAGS:
            raise ValueError(f"Unknown iterator tag: {tag}")

        base = "SELECT p.id, p.installtid, p.header FROM packages p"
        if tag == 'packages':
            if key is None:
                cursor = self.conn.execute(f"{base} ORDER BY p.id")
            else:
                cursor = self.conn.execute(f"{base} WHERE p.id = ?", (int(key),))
        elif tag == 'name':
            cursor = self.conn.execute(f"{base} WHERE p.name = ? ORDER BY p.id", (key,))
        elif tag == 'installtid':
            cursor = self.conn.execute(f"{base} WHERE p.installtid = ? ORDER BY p.id", (int(key),))
        elif tag == 'files':
            cursor = self.conn.execute(f"""
                {base} WHERE p.id IN (SELECT pkg_id FROM files WHERE path = ?)
                ORDER BY p.id
            """, (key,))
        else:
            cursor = self.conn.execute(f"""
                {base} WHERE p.id IN (SELECT pkg_id FROM {tag} WHERE capability = ?)
                ORDER BY p.id
            """, (key,))

        for row in cursor.fetchall():
            yield self._row_to_header(row)

    def whatprovides(self, dep: Dependency) -> List[Dict[str, Any]]:
        """Find installed headers satisfying a dependency."""
        tag = 'files' if dep.is_file else 'provides'
        candidates = {h['offset']: h for h in self.iterate(tag, dep.name)}
        if not dep.is_file:
            for h in self.iterate('name', dep.name):
                candidates.setdefault(h['offset'], h)

        result = []
        for offset, header in sorted(candidates.items()):
            te = TransactionElement.from_header(header, ElementType.REMOVED)
            if te.satisfies(dep):
                result.append(header)
        return result

    # =========================================================================
    # Maintenance
    # =========================================================================

    def rebuild(self):
        """Rebuild every index table from the stored headers."""
        self._require_open(write=True)
        logger.info(f"Rebuilding indexes of {self.db_path}")
        for table in DEP_TABLES + ('files',):
            self.conn.execute(f"DELETE FROM {table}")
        rows = self.conn.execute("SELECT id, header FROM packages").fetchall()
        for row in rows:
            self._index_header(row['id'], json.loads(row['header']))
        self.conn.commit()

    def verify(self) -> bool:
        """Run SQLite integrity checks and validate stored headers."""
        self._require_open()
        result = self.conn.execute("PRAGMA integrity_check").fetchone()[0]
        if result != 'ok':
            logger.error(f"Integrity check failed for {self.db_path}: {result}")
            return False
        for row in self.conn.execute("SELECT id, header FROM packages"):
            try:
                json.loads(row['header'])
            except ValueError:
                logger.error(f"Corrupted header at offset {row['id']}")
                return False
        return True
