"""Tests for TransactionSet.run()"""

import pytest

from rpmts.core.config import TransactionConfig
from rpmts.core.flags import ProbFilter, TransactionType, TransFlags, VSFlags
from rpmts.core.notify import CallbackType
from rpmts.core.problems import ProblemSet, ProblemType
from rpmts.core.timers import OpX
from rpmts.core.transaction import TransactionSet


def _hdr(name, version='1.0', release='1', **extra):
    hdr = {'name': name, 'epoch': 0, 'version': version, 'release': release,
           'arch': 'noarch'}
    hdr.update(extra)
    return hdr


class RecordingNotifier:
    """Notifier remembering every event."""

    def __init__(self):
        self.events = []
        self.handles = []

    def notify(self, ts, te, what, amount, total):
        self.events.append((what, te.name if te is not None else None))
        if what == CallbackType.INST_OPEN_FILE:
            return f"fd-{te.name}"
        if what == CallbackType.INST_CLOSE_FILE:
            self.handles.append(te.handle)
        return None


class FailingExecutor:
    """Executor failing for the named packages."""

    def __init__(self, *fail):
        self.fail = set(fail)
        self.done = []

    def install(self, ts, te):
        self.done.append(('install', te.name, ts.get_type()))
        return te.name not in self.fail

    def erase(self, ts, te):
        self.done.append(('erase', te.name, ts.get_type()))
        return te.name not in self.fail


@pytest.fixture
def config(tmp_path):
    # no mount table: disk space is only checked on filesystems tests add
    return TransactionConfig(db_path=tmp_path / 'packages.db',
                             mounts_file=tmp_path / 'no-mounts')


@pytest.fixture
def ts(config):
    ts = TransactionSet.create(config)
    assert ts.init_db() == 0
    yield ts
    ts.free()


@pytest.fixture
def rdb(ts):
    return ts.get_rdb()


class TestRun:
    """Tests for executing elements."""

    def test_empty(self, ts):
        assert ts.run() == 0

    def test_no_database(self, tmp_path):
        blocker = tmp_path / 'blocker'
        blocker.write_text('not a directory')
        ts = TransactionSet.create(TransactionConfig(db_path=blocker / 'x.db'))
        ts.add_install_element(_hdr('foo'))
        assert ts.run() == -1
        ts.free()

    def test_install_and_erase(self, ts, rdb):
        old = rdb.add_header(_hdr('old'))
        ts.add_install_element(_hdr('new', files=[{'path': '/usr/bin/new', 'size': 10}]))
        ts.add_erase_element(rdb.get_header(old), old)
        ts.order()
        assert ts.run() == 0

        names = [h['name'] for h in rdb.iterate()]
        assert names == ['new']
        new = next(rdb.iterate('name', 'new'))
        assert new['installtid'] == ts.get_tid()
        assert new['offset'] == ts.element(0).db_offset
        assert ts.op(OpX.DBADD).count == 1
        assert ts.op(OpX.DBREMOVE).count == 1

    def test_test_mode_leaves_database(self, ts, rdb):
        ts.set_flags(TransFlags.TEST)
        ts.add_install_element(_hdr('new'))
        assert ts.run() == 0
        assert rdb.count() == 0

    def test_build_probs(self, ts, rdb):
        ts.set_flags(TransFlags.BUILD_PROBS)
        ts.add_install_element(_hdr('new'))
        assert ts.run() == 0
        assert rdb.count() == 0

    def test_notifications(self, ts):
        notifier = RecordingNotifier()
        assert ts.set_notifier(notifier) is None
        ts.set_flags(TransFlags.TEST)
        ts.add_install_element(_hdr('a'))
        ts.run()

        assert [what for what, _ in notifier.events] == [
            CallbackType.TRANS_START,
            CallbackType.INST_OPEN_FILE,
            CallbackType.INST_START,
            CallbackType.INST_PROGRESS,
            CallbackType.INST_CLOSE_FILE,
            CallbackType.TRANS_PROGRESS,
            CallbackType.TRANS_STOP,
        ]
        assert notifier.handles == ['fd-a']
        assert ts.element(0).handle is None

    def test_erase_notifications(self, ts, rdb):
        offset = rdb.add_header(_hdr('gone'))
        notifier = RecordingNotifier()
        ts.set_notifier(notifier)
        ts.add_erase_element(rdb.get_header(offset), offset)
        ts.run()
        assert (CallbackType.UNINST_START, 'gone') in notifier.events
        assert (CallbackType.UNINST_STOP, 'gone') in notifier.events

    def test_executor_failure(self, ts, rdb):
        ts.executor = FailingExecutor('b')
        ts.add_install_element(_hdr('a'))
        ts.add_install_element(_hdr('b'))
        assert ts.run() == 1
        assert [h['name'] for h in rdb.iterate()] == ['a']
        assert ts.element(1).failed

    def test_justdb_skips_executor(self, ts, rdb):
        executor = FailingExecutor('a')
        ts.executor = executor
        ts.set_flags(TransFlags.JUSTDB)
        ts.add_install_element(_hdr('a'))
        assert ts.run() == 0
        assert executor.done == []
        assert rdb.count() == 1

    def test_vsflags_copied(self, ts):
        ts.set_vsflags(VSFlags.NOSIGNATURES)
        ts.set_flags(TransFlags.TEST)
        ts.add_install_element(_hdr('a'))
        ts.run()
        assert ts.element(0).vsflags == VSFlags.NOSIGNATURES


class TestRunProblems:
    """Problems found before anything is executed."""

    def test_already_installed(self, ts, rdb):
        rdb.add_header(_hdr('foo'))
        ts.add_install_element(_hdr('foo'))
        assert ts.run() == 1
        assert ts.problems.of_type(ProblemType.PKG_INSTALLED)
        assert rdb.count() == 1

    def test_already_installed_ignored(self, ts, rdb):
        rdb.add_header(_hdr('foo'))
        ts.add_install_element(_hdr('foo'))
        assert ts.run(ignore_set=ProbFilter.REPLACEPKG) == 0
        assert ts.get_ignore_set() == ProbFilter.REPLACEPKG
        assert rdb.count() == 2

    def test_ok_probs(self, ts, rdb):
        rdb.add_header(_hdr('foo'))
        ts.add_install_element(_hdr('foo'))
        ok = ProblemSet()
        ok.append(ProblemType.PKG_INSTALLED, 'foo-1.0-1')
        assert ts.run(ok_probs=ok) == 0

    def test_older_package(self, ts, rdb):
        rdb.add_header(_hdr('foo', version='2.0'))
        ts.add_install_element(_hdr('foo', version='1.0'))
        assert ts.run() == 1
        problem = ts.problems.of_type(ProblemType.OLDPACKAGE)[0]
        assert problem.alt_nevr == 'foo-2.0-1'
        assert ts.run(ignore_set=ProbFilter.OLDPACKAGE) == 0

    def test_bad_relocation(self, ts):
        ts.add_install_element(_hdr('fixed', files=['/opt/x']), relocations=[('/opt', '/srv')])
        assert ts.run() == 1
        assert ts.problems.of_type(ProblemType.BADRELOCATE)[0].str1 == '/opt'

    def test_check_problems_do_not_block(self, ts):
        ts.add_install_element(_hdr('app', requires=['missing']))
        ts.check()
        assert ts.problems
        ts.set_flags(TransFlags.TEST)
        assert ts.run() == 0


class TestDiskSpace:
    """Disk space shortages found while accounting files."""

    def test_one_diagnostic(self, ts):
        ts.dsi.add_filesystem(1, '/', 1024, bavail=100)
        ts.add_install_element(_hdr('big', files=[{'path': '/usr/share/big', 'size': 101 * 1024}]))
        assert ts.run() == 1
        probs = ts.problems.of_type(ProblemType.DISKSPACE)
        assert len(probs) == 1
        assert probs[0].str1 == '/'
        assert probs[0].amount == 6 * 1024
        assert ts.element(0).fs_touched == {1}

    def test_fits(self, ts):
        ts.dsi.add_filesystem(1, '/', 1024, bavail=100)
        ts.set_flags(TransFlags.TEST)
        ts.add_install_element(_hdr('small', files=[{'path': '/usr/share/s', 'size': 90 * 1024}]))
        assert ts.run() == 0

    def test_ignored(self, ts):
        ts.dsi.add_filesystem(1, '/', 1024, bavail=100)
        ts.set_flags(TransFlags.TEST)
        ts.add_install_element(_hdr('big', files=[{'path': '/usr/share/big', 'size': 101 * 1024}]))
        assert ts.run(ignore_set=ProbFilter.DISKSPACE) == 0

    def test_inodes(self, ts):
        ts.dsi.add_filesystem(1, '/', 1024, bavail=-1, iavail=1)
        ts.add_install_element(_hdr('many', files=['/a', '/b']))
        assert ts.run() == 1
        assert ts.problems.of_type(ProblemType.DISKNODES)[0].amount == 1

    def test_erase_reclaims_space(self, ts):
        ts.dsi.add_filesystem(1, '/', 1024, bavail=100)
        ts.add_erase_element(_hdr('old', files=[{'path': '/usr/old', 'size': 4097}]), 3)
        ts.set_flags(TransFlags.TEST)
        ts.run()
        dsi = ts.dsi.get(1)
        assert dsi.bneeded == -5
        assert dsi.ineeded == -1

    def test_upgrade_counts_replaced_files(self, ts):
        ts.dsi.add_filesystem(1, '/', 1024, bavail=100)
        ts.add_install_element(_hdr('app', version='2', files=[{'path': '/usr/app', 'size': 4096}]))
        ts.add_erase_element(_hdr('app', files=[{'path': '/usr/app', 'size': 3072},
                                                 {'path': '/usr/app.old', 'size': 1024}]),
                             7, depends_on=ts.element(0))
        ts.set_flags(TransFlags.TEST)
        assert ts.run() == 0
        dsi = ts.dsi.get(1)
        assert dsi.bneeded == 4 - 3 - 1
        assert dsi.ineeded == -1

    def test_test_run_then_real_run(self, ts):
        ts.dsi.add_filesystem(1, '/', 1024, bavail=100)
        ts.add_install_element(_hdr('a', files=[{'path': '/usr/share/a', 'size': 60 * 1024}]))
        ts.set_flags(TransFlags.TEST)
        assert ts.run() == 0
        ts.set_flags(TransFlags.NONE)
        assert ts.run() == 0
        assert ts.dsi.get(1).bneeded == 60
        assert not ts.problems.of_type(ProblemType.DISKSPACE)


class TestAutorollback:
    """A failed transaction is undone by its rollback transaction."""

    def test_rollback_erases_installed(self, config, ts, rdb):
        config.autorollback = True
        executor = FailingExecutor('b')
        ts.executor = executor
        ts.add_install_element(_hdr('a'))
        ts.add_install_element(_hdr('b'))

        assert ts.run() == 1
        assert rdb.count() == 0
        assert ts.rollback_ts is not None
        assert ts.rollback_ts.get_type() == TransactionType.AUTOROLLBACK
        assert ts.score.get_entry('a').installed
        assert not ts.score.get_entry('b').installed
        assert ('erase', 'a', TransactionType.AUTOROLLBACK) in executor.done

    def test_rollback_reinstalls_erased(self, config, ts, rdb):
        config.autorollback = True
        old = rdb.add_header(_hdr('keep', files=['/usr/keep']))
        ts.executor = FailingExecutor('bad')
        ts.add_erase_element(rdb.get_header(old), old)
        ts.add_install_element(_hdr('bad'))

        assert ts.run() == 1
        assert [h['name'] for h in rdb.iterate()] == ['keep']
        assert ts.score.get_entry('keep') is not None

    def test_no_rollback_when_disabled(self, ts):
        ts.executor = FailingExecutor('b')
        ts.add_install_element(_hdr('b'))
        ts.run()
        assert ts.rollback_ts is None
        assert ts.score is None

    def test_rollback_scores_untouched(self, config, ts):
        config.autorollback = True
        ts.executor = FailingExecutor('b')
        ts.add_install_element(_hdr('a'))
        ts.add_install_element(_hdr('b'))
        ts.run()
        # the replay erased 'a' without marking it erased
        assert not ts.score.get_entry('a').erased
