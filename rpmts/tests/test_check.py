"""Tests for TransactionSet.check()"""

import pytest

from rpmts.core.config import TransactionConfig
from rpmts.core.database import PackageDatabase
from rpmts.core.element import Dependency
from rpmts.core.flags import TransFlags
from rpmts.core.problems import ProblemType
from rpmts.core.solver import DatabaseSolver, SolveResult
from rpmts.core.transaction import TransactionSet


def _hdr(name, version='1.0', release='1', **extra):
    hdr = {'name': name, 'epoch': 0, 'version': version, 'release': release,
           'arch': 'noarch'}
    hdr.update(extra)
    return hdr


@pytest.fixture
def config(tmp_path):
    return TransactionConfig(db_path=tmp_path / 'packages.db',
                             solve_db_path=tmp_path / 'solve.db',
                             mounts_file=tmp_path / 'mounts')


@pytest.fixture
def ts(config):
    ts = TransactionSet.create(config)
    assert ts.init_db() == 0
    yield ts
    ts.free()


@pytest.fixture
def rdb(ts):
    return ts.get_rdb()


@pytest.fixture
def sdb(config):
    """Solve database with packages available for install."""
    db = PackageDatabase(config.solve_db_path)
    db.init()
    db.add_header(_hdr('libbar', version='1.0', provides=['libbar.so.1']))
    db.add_header(_hdr('libbar', version='2.0', provides=['libbar.so.1']))
    db.add_header(_hdr('libbaz', requires=['libqux']))
    db.close()
    return db


class RecordingSolver:
    """Solver returning a fixed result and remembering what it was asked."""

    def __init__(self, result):
        self.result = result
        self.asked = []

    def solve(self, ts, dep, data):
        self.asked.append((str(dep), data))
        return self.result


class TestRequires:
    """Tests for unresolved requirements of installs."""

    def test_unresolved(self, ts):
        ts.add_install_element(_hdr('app', requires=['libfoo >= 2']), key='app.rpm')
        assert ts.check() == 0
        probs = ts.problems.of_type(ProblemType.REQUIRES)
        assert len(probs) == 1
        assert probs[0].pkg_nevr == 'app-1.0-1'
        assert probs[0].str1 == 'libfoo >= 2'
        assert probs[0].key == 'app.rpm'

    def test_recheck_after_adding_provider(self, ts):
        ts.add_install_element(_hdr('app', requires=['lib']))
        assert ts.check() == 0
        assert len(ts.problems.of_type(ProblemType.REQUIRES)) == 1
        ts.add_install_element(_hdr('lib'))
        assert ts.check() == 0
        assert not ts.problems

    def test_recheck_does_not_duplicate(self, ts):
        ts.add_install_element(_hdr('app', requires=['lib']))
        ts.check()
        ts.check()
        assert len(ts.problems.of_type(ProblemType.REQUIRES)) == 1

    def test_satisfied_in_transaction(self, ts):
        ts.add_install_element(_hdr('app', requires=['libfoo >= 2']))
        ts.add_install_element(_hdr('libfoo', version='2.1'))
        assert ts.check() == 0
        assert not ts.problems
        app = ts.element(0)
        assert [p.name for _, p in app.resolved] == ['libfoo']

    def test_satisfied_by_installed(self, ts, rdb):
        rdb.add_header(_hdr('libfoo', version='3.0', provides=['libfoo.so.1']))
        ts.add_install_element(_hdr('app', requires=['libfoo.so.1', 'libfoo >= 2']))
        assert ts.check() == 0
        assert not ts.problems

    def test_version_too_old(self, ts, rdb):
        rdb.add_header(_hdr('libfoo', version='1.0'))
        ts.add_install_element(_hdr('app', requires=['libfoo >= 2']))
        ts.check()
        assert len(ts.problems) == 1

    def test_installed_provider_being_erased(self, ts, rdb):
        offset = rdb.add_header(_hdr('libfoo'))
        ts.add_install_element(_hdr('app', requires=['libfoo']))
        ts.add_erase_element(rdb.get_header(offset), offset)
        ts.check()
        assert [p.str1 for p in ts.problems.of_type(ProblemType.REQUIRES)] == ['libfoo']

    def test_self_requirement(self, ts):
        ts.add_install_element(_hdr('app', requires=['app', '/usr/bin/app'],
                                    files=['/usr/bin/app']))
        ts.check()
        assert not ts.problems

    def test_rpmlib_skipped(self, ts):
        ts.add_install_element(_hdr('app', requires=['rpmlib(CompressedFileNames) <= 3.0.4-1']))
        ts.check()
        assert not ts.problems

    def test_no_database(self, tmp_path):
        ts = TransactionSet.create(TransactionConfig(db_path=tmp_path / 'none' / 'x.db'))
        ts.add_install_element(_hdr('app'))
        assert ts.check() == 1
        ts.free()


class TestErase:
    """Erasing must not break installed packages."""

    def test_needed_by_installed(self, ts, rdb):
        lib = rdb.add_header(_hdr('libfoo', provides=['libfoo.so.1']))
        rdb.add_header(_hdr('app', requires=['libfoo.so.1']))
        ts.add_erase_element(rdb.get_header(lib), lib)
        ts.check()
        probs = ts.problems.of_type(ProblemType.REQUIRES)
        assert len(probs) == 1
        assert probs[0].pkg_nevr == 'libfoo-1.0-1'
        assert probs[0].alt_nevr == 'app-1.0-1'
        assert str(probs[0]) == 'libfoo.so.1 is needed by app-1.0-1 (removing libfoo-1.0-1)'

    def test_needer_also_erased(self, ts, rdb):
        lib = rdb.add_header(_hdr('libfoo', provides=['libfoo.so.1']))
        app = rdb.add_header(_hdr('app', requires=['libfoo.so.1']))
        ts.add_erase_element(rdb.get_header(lib), lib)
        ts.add_erase_element(rdb.get_header(app), app)
        ts.check()
        assert not ts.problems

    def test_replacement_added(self, ts, rdb):
        lib = rdb.add_header(_hdr('libfoo', provides=['libfoo.so.1']))
        rdb.add_header(_hdr('app', requires=['libfoo.so.1']))
        ts.add_erase_element(rdb.get_header(lib), lib)
        ts.add_install_element(_hdr('libfoo-ng', provides=['libfoo.so.1']))
        ts.check()
        assert not ts.problems

    def test_file_needed(self, ts, rdb):
        sh = rdb.add_header(_hdr('bash', files=['/bin/sh']))
        rdb.add_header(_hdr('initscripts', requires=['/bin/sh[*]']))
        ts.add_erase_element(rdb.get_header(sh), sh)
        ts.check()
        assert len(ts.problems.of_type(ProblemType.REQUIRES)) == 1


class TestConflicts:

    def test_between_installs(self, ts):
        ts.add_install_element(_hdr('postfix', conflicts=['sendmail']))
        ts.add_install_element(_hdr('sendmail'))
        ts.check()
        probs = ts.problems.of_type(ProblemType.CONFLICT)
        assert len(probs) == 1
        assert probs[0].alt_nevr == 'sendmail-1.0-1'

    def test_with_installed(self, ts, rdb):
        rdb.add_header(_hdr('sendmail'))
        ts.add_install_element(_hdr('postfix', conflicts=['sendmail']))
        ts.check()
        assert len(ts.problems.of_type(ProblemType.CONFLICT)) == 1

    def test_installed_conflicts_with_new(self, ts, rdb):
        rdb.add_header(_hdr('sendmail', conflicts=['postfix < 3']))
        ts.add_install_element(_hdr('postfix', version='2.0'))
        ts.check()
        probs = ts.problems.of_type(ProblemType.CONFLICT)
        assert len(probs) == 1
        assert probs[0].alt_nevr == 'sendmail-1.0-1'

    def test_installed_conflict_not_matching(self, ts, rdb):
        rdb.add_header(_hdr('sendmail', conflicts=['postfix < 3']))
        ts.add_install_element(_hdr('postfix', version='3.1'))
        ts.check()
        assert not ts.problems

    def test_conflicting_package_erased(self, ts, rdb):
        offset = rdb.add_header(_hdr('sendmail'))
        ts.add_install_element(_hdr('postfix', conflicts=['sendmail']))
        ts.add_erase_element(rdb.get_header(offset), offset)
        ts.check()
        assert not ts.problems


class TestSolveCallback:
    """Tests for the solver hook."""

    def test_ignore(self, ts):
        solver = RecordingSolver(SolveResult.IGNORE)
        assert ts.set_solve_callback(solver, data='ctx') is None
        ts.add_install_element(_hdr('app', requires=['missing']))
        ts.check()
        assert not ts.problems
        assert solver.asked == [('missing', 'ctx')]

    def test_not_found(self, ts):
        ts.set_solve_callback(RecordingSolver(SolveResult.NOT_FOUND))
        ts.add_install_element(_hdr('app', requires=['missing']))
        ts.check()
        assert len(ts.problems) == 1

    def test_retry_unresolved_records_problem(self, ts):
        ts.set_solve_callback(RecordingSolver(SolveResult.RETRY))
        ts.add_install_element(_hdr('app', requires=['missing']))
        ts.check()
        assert len(ts.problems) == 1

    def test_nosuggest_skips_solver(self, ts):
        solver = RecordingSolver(SolveResult.IGNORE)
        ts.set_solve_callback(solver)
        ts.set_flags(TransFlags.NOSUGGEST)
        ts.add_install_element(_hdr('app', requires=['missing']))
        ts.check()
        assert solver.asked == []
        assert len(ts.problems) == 1

    def test_database_solver_suggests(self, ts, sdb):
        ts.set_solve_callback(DatabaseSolver())
        ts.add_install_element(_hdr('app', requires=['libbar.so.1']))
        ts.check()
        assert len(ts.problems) == 1
        assert [h['version'] for h in ts.suggests] == ['2.0']

    def test_database_solver_auto_add(self, ts, sdb):
        ts.set_solve_callback(DatabaseSolver(auto_add=True))
        ts.add_install_element(_hdr('app', requires=['libbar.so.1']))
        ts.check()
        assert not ts.problems
        assert [te.name for te in ts.iter_elements()] == ['app', 'libbar']
        assert ts.element(1).version == '2.0'

    def test_auto_added_element_is_checked(self, ts, sdb):
        ts.set_solve_callback(DatabaseSolver(auto_add=True))
        ts.add_install_element(_hdr('app', requires=['libbaz']))
        ts.check()
        assert [p.str1 for p in ts.problems] == ['libqux']
        assert ts.problems.of_type(ProblemType.REQUIRES)[0].pkg_nevr == 'libbaz-1.0-1'


class TestSuggestions:

    def test_dedup_and_cap(self, ts):
        ts.config.max_suggests = 2
        assert ts.add_suggestion(_hdr('a'))
        assert not ts.add_suggestion(_hdr('a'))
        assert ts.add_suggestion(_hdr('b'))
        assert not ts.add_suggestion(_hdr('c'))
        assert len(ts.suggests) == 2


class TestAvailable:

    def test_deprecated_available(self, ts):
        ts.set_available([_hdr('libfoo', version='1.0'), _hdr('libfoo', version='1.5'),
                          {'name': 'broken'}])
        with pytest.warns(DeprecationWarning):
            assert ts.available(Dependency.parse('libfoo >= 1'))
        assert ts.element(0).version == '1.5'

    def test_nothing_available(self, ts):
        with pytest.warns(DeprecationWarning):
            assert not ts.available(Dependency('nothing'))
