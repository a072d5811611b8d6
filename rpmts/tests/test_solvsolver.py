"""Tests for the libsolv backed solver"""

import pytest

solv = pytest.importorskip('solv')

from rpmts.core.element import Dependency  # noqa: E402
from rpmts.core.solver import SolveResult  # noqa: E402
from rpmts.core.solvsolver import LibsolvSolver  # noqa: E402


class MockTransactionSet:

    def __init__(self):
        self.suggested = []
        self.added = []

    def get_color(self):
        return 0

    def add_suggestion(self, header):
        self.suggested.append(header)
        return True

    def add_install_element(self, header, key=None, upgrade=False):
        self.added.append(header)
        return 0


def _add_solvable(repo, name, evr, provides=()):
    s = repo.add_solvable()
    s.name = name
    s.evr = evr
    s.arch = 'noarch'
    s.add_deparray(solv.SOLVABLE_PROVIDES, repo.pool.Dep(name).Rel(solv.REL_EQ, repo.pool.Dep(evr)))
    for prov in provides:
        s.add_deparray(solv.SOLVABLE_PROVIDES, repo.pool.Dep(prov))
    return s


@pytest.fixture
def pool():
    pool = solv.Pool()
    pool.setarch('x86_64')
    available = pool.add_repo('available')
    _add_solvable(available, 'libbar', '1.0-1', provides=['libbar.so.1'])
    _add_solvable(available, 'libbar', '2.0-1', provides=['libbar.so.1'])
    installed = pool.add_repo('installed')
    _add_solvable(installed, 'libbar', '0.5-1', provides=['libbar.so.1'])
    pool.installed = installed
    available.internalize()
    installed.internalize()
    return pool


class TestLibsolvSolver:

    def test_providers_skip_installed(self, pool):
        solver = LibsolvSolver(pool)
        versions = sorted(h['version'] for h in solver.providers(Dependency('libbar.so.1')))
        assert versions == ['1.0', '2.0']

    def test_versioned(self, pool):
        solver = LibsolvSolver(pool)
        found = solver.providers(Dependency.parse('libbar >= 1.5'))
        assert [h['version'] for h in found] == ['2.0']

    def test_suggest(self, pool):
        ts = MockTransactionSet()
        rc = LibsolvSolver(pool).solve(ts, Dependency('libbar.so.1'), None)
        assert rc == SolveResult.NOT_FOUND
        assert ts.suggested[0]['version'] == '2.0'

    def test_auto_add(self, pool):
        ts = MockTransactionSet()
        rc = LibsolvSolver(pool, auto_add=True).solve(ts, Dependency('libbar.so.1'), None)
        assert rc == SolveResult.RETRY
        assert ts.added[0]['name'] == 'libbar'

    def test_not_found(self, pool):
        ts = MockTransactionSet()
        rc = LibsolvSolver(pool).solve(ts, Dependency('libnope'), None)
        assert rc == SolveResult.NOT_FOUND
        assert ts.suggested == []
