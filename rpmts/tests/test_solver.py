"""Tests for dependency solvers"""

import pytest

from rpmts.core.database import PackageDatabase
from rpmts.core.element import Dependency
from rpmts.core.solver import DatabaseSolver, SolveResult, pick_best


def _hdr(name, version='1.0', release='1', **extra):
    hdr = {'name': name, 'epoch': 0, 'version': version, 'release': release,
           'arch': 'x86_64'}
    hdr.update(extra)
    return hdr


class MockTransactionSet:
    """Just enough of a transaction set for the solver."""

    def __init__(self, sdb=None, color=0, admit=0):
        self.sdb = sdb
        self.color = color
        self.admit = admit
        self.suggested = []
        self.added = []

    def get_sdb(self):
        return self.sdb

    def get_color(self):
        return self.color

    def add_suggestion(self, header):
        self.suggested.append(header)
        return True

    def add_install_element(self, header, key=None, upgrade=False):
        self.added.append((header, key, upgrade))
        return self.admit


@pytest.fixture
def sdb(tmp_path):
    db = PackageDatabase(tmp_path / 'solve.db')
    db.init()
    db.add_header(_hdr('libbar', version='1.0', provides=['libbar.so.1']))
    db.add_header(_hdr('libbar', version='1.5', provides=['libbar.so.1'], color=1, arch='i586'))
    db.add_header(_hdr('libbar', version='1.2', provides=['libbar.so.1'], color=2))
    yield db
    db.close()


class TestPickBest:

    def test_empty(self):
        assert pick_best([]) is None

    def test_newest(self):
        headers = [_hdr('a', version='1'), _hdr('a', version='3'), _hdr('a', version='2')]
        assert pick_best(headers)['version'] == '3'

    def test_color_preferred(self):
        headers = [_hdr('a', version='3', color=1), _hdr('a', version='2', color=2)]
        assert pick_best(headers, color=2)['version'] == '2'

    def test_no_compatible_color(self):
        headers = [_hdr('a', version='3', color=1)]
        assert pick_best(headers, color=2)['version'] == '3'


class TestDatabaseSolver:
    """Tests for solving from a solve database."""

    def test_rpmlib_ignored(self):
        ts = MockTransactionSet()
        dep = Dependency.parse('rpmlib(PayloadIsXz) <= 5.2-1')
        assert DatabaseSolver().solve(ts, dep, None) == SolveResult.IGNORE

    def test_no_solve_database(self):
        ts = MockTransactionSet()
        assert DatabaseSolver().solve(ts, Dependency('libbar.so.1'), None) == SolveResult.NOT_FOUND

    def test_suggests_best(self, sdb):
        ts = MockTransactionSet(sdb, color=2)
        rc = DatabaseSolver().solve(ts, Dependency('libbar.so.1'), None)
        assert rc == SolveResult.NOT_FOUND
        assert [h['version'] for h in ts.suggested] == ['1.2']
        assert ts.added == []

    def test_nothing_provides(self, sdb):
        ts = MockTransactionSet(sdb)
        assert DatabaseSolver().solve(ts, Dependency('libnope'), None) == SolveResult.NOT_FOUND
        assert ts.suggested == []

    def test_auto_add(self, sdb):
        ts = MockTransactionSet(sdb)
        rc = DatabaseSolver(auto_add=True).solve(ts, Dependency('libbar.so.1'), None)
        assert rc == SolveResult.RETRY
        header, key, upgrade = ts.added[0]
        assert header['version'] == '1.5'
        assert 'offset' not in header
        assert key == 'libbar-1.5-1.i586'
        assert upgrade

    def test_auto_add_refused(self, sdb):
        ts = MockTransactionSet(sdb, admit=1)
        rc = DatabaseSolver(auto_add=True).solve(ts, Dependency('libbar.so.1'), None)
        assert rc == SolveResult.NOT_FOUND
