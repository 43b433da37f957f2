#!/usr/bin/env python3
"""
Session Orchestrator Tests for claude-gwt
Tests idempotent session ensuring, bulk launch, switching, shutdown and the orchestration context
"""

import logging
import logging.handlers
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Add parent directory to path
sys.path.append(str(Path(__file__).parent))

from claude_gwt.core.context import OrchestrationContext
from claude_gwt.core.errors import InstanceAlreadyRunningError, InstanceError, TargetNotFoundError
from claude_gwt.core.models import DirectoryKind, EnsureOutcome, Role, SessionDescriptor, SwitchAction
from claude_gwt.core.session_orchestrator import SessionOrchestrator
from claude_gwt.git.classifier import DirectoryClassifier
from claude_gwt.git.worktree_manager import WorktreeManager
from claude_gwt.tmux.driver import TmuxDriver
from claude_gwt.tmux.session_registry import SessionRegistry
from claude_gwt.utils.config_loader import GWTConfig
from claude_gwt.utils.logging_config import ROOT_LOGGER_NAME
from testing_support import FakeRunner, fail, ok

BRANCHES = ["alpha", "bravo", "charlie", "delta", "echo"]

IDLE_SCRIPT = "import sys\nfor line in sys.stdin:\n    pass\n"


class OrchestratorTestCase(unittest.IsolatedAsyncioTestCase):
    """Container on disk, scripted git and tmux"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.container = Path(self.test_dir).resolve() / "app"
        (self.container / ".bare").mkdir(parents=True)
        (self.container / ".bare" / "HEAD").write_text("ref: refs/heads/main\n")
        (self.container / ".git").write_text("gitdir: ./.bare\n")

        listing = "worktree {}\nbare\n\nworktree {}\nHEAD abc\nbranch refs/heads/main\n\n".format(
            self.container / ".bare", self.container)
        for branch in BRANCHES:
            (self.container / branch).mkdir()
            listing += f"worktree {self.container / branch}\nHEAD abc\nbranch refs/heads/{branch}\n\n"

        self.git = FakeRunner("git").on("worktree", "list", result=ok(listing))
        self.tmux = FakeRunner("tmux")
        self.environ = {}
        self.config = GWTConfig(always_continue=False, retry_initial_delay=0)
        self.sessions = SessionRegistry(TmuxDriver(self.tmux), config=self.config, environ=self.environ)
        self.available = patch.object(SessionRegistry, "is_available", return_value=True)
        self.available.start()

        self.orchestrator = SessionOrchestrator(
            self.sessions,
            classifier=DirectoryClassifier(self.git),
            config=self.config,
            worktree_factory=lambda container: WorktreeManager(container, git=self.git, retry_delay=0),
        )

    def tearDown(self):
        self.available.stop()
        shutil.rmtree(self.test_dir)

    def existing_sessions(self, *branches, assistant: bool = True):
        rows = "".join(f"cgwt-app--{branch}|1|1700000000|0\n" for branch in branches)
        self.tmux.on("list-sessions", result=ok(rows))
        self.tmux.on("list-panes", result=ok(f"%1|s|0|0|{'claude' if assistant else 'zsh'}||\n"))


class TestEnsure(OrchestratorTestCase):
    """Test ensure for each session state"""

    def setUp(self):
        super().setUp()
        self.descriptor = SessionDescriptor.for_branch("app", "alpha", Role.CHILD, str(self.container / "alpha"))

    async def test_creates_missing_session(self):
        outcome = await self.orchestrator.ensure(self.descriptor, "app")
        self.assertEqual(outcome, EnsureOutcome.CREATED)
        self.assertEqual(len(self.tmux.commands("new-session")), 1)

    async def test_live_session_is_left_alone(self):
        """Test that ensuring a running session never kills or recreates it"""
        self.existing_sessions("alpha")
        outcome = await self.orchestrator.ensure(self.descriptor, "app")
        self.assertEqual(outcome, EnsureOutcome.ALREADY_RUNNING)
        for command in ("kill-session", "new-session", "new-window", "send-keys"):
            self.assertEqual(self.tmux.commands(command), [], command)

    async def test_restarts_assistant_in_existing_session(self):
        self.existing_sessions("alpha", assistant=False)
        outcome = await self.orchestrator.ensure(self.descriptor, "app")
        self.assertEqual(outcome, EnsureOutcome.RESTARTED)
        self.assertEqual(len(self.tmux.commands("new-window")), 1)
        self.assertEqual(self.tmux.commands("kill-session"), [])

    async def test_lost_creation_race(self):
        self.tmux.on("new-session", result=fail("duplicate session: cgwt-app--alpha"))
        outcome = await self.orchestrator.ensure(self.descriptor, "app")
        self.assertEqual(outcome, EnsureOutcome.ALREADY_RUNNING)


class TestLaunchAll(OrchestratorTestCase):
    """Test launch_all"""

    async def test_launch_creates_supervisor_first(self):
        report = await self.orchestrator.launch_all(self.container, attach=False)

        created = [call[3] for call in self.tmux.commands("new-session")]
        self.assertEqual(created[0], "cgwt-app--supervisor")
        self.assertEqual(sorted(created[1:]), [f"cgwt-app--{b}" for b in BRANCHES])
        # the container itself is the supervisor's directory, not a branch session
        self.assertNotIn("cgwt-app--main", created)
        self.assertEqual(report.supervisor_session, "cgwt-app--supervisor")
        self.assertEqual(report.sessions.targeted, 5)
        self.assertTrue(report.sessions.ok)
        self.assertFalse(report.attached)

    async def test_one_failure_does_not_stop_the_rest(self):
        self.tmux.on("new-session", "-d", "-s", "cgwt-app--charlie", result=fail("fork failed"))
        report = await self.orchestrator.launch_all(self.container, attach=False)

        self.assertEqual(report.sessions.failed_count, 1)
        self.assertIn("cgwt-app--charlie", report.sessions.failed)
        self.assertEqual(len(report.sessions.succeeded), 4)

    async def test_attach_inside_tmux_switches_client(self):
        self.environ["TMUX"] = "/tmp/tmux-0/default,1,0"
        report = await self.orchestrator.launch_all(self.container)
        self.assertTrue(report.attached)
        self.assertEqual(self.tmux.calls[-1], ["switch-client", "-t", "=cgwt-app--supervisor"])

    async def test_running_twice_is_idempotent(self):
        self.existing_sessions("supervisor", *BRANCHES)
        report = await self.orchestrator.launch_all(self.container, attach=False)
        self.assertTrue(report.sessions.ok)
        self.assertEqual(self.tmux.commands("new-session"), [])
        self.assertEqual(self.tmux.commands("kill-session"), [])


class TestSwitchAndShutdown(OrchestratorTestCase):
    """Test list_targets, switch_to, shutdown_all and enter_supervisor_mode"""

    async def test_list_targets(self):
        targets = await self.orchestrator.list_targets(self.container)
        self.assertEqual([t.branch for t in targets], ["supervisor"] + BRANCHES)
        self.assertEqual(targets[0].role, Role.SUPERVISOR)
        self.assertEqual(targets[0].working_directory, str(self.container))
        self.assertEqual([t.index for t in targets], list(range(6)))

    async def test_colliding_branch_names_are_skipped(self):
        """Test that no worktree can take the supervisor's or another worktree's session name"""
        listing = "worktree {}\nbare\n\n".format(self.container / ".bare")
        for branch in ("supervisor", "feature/x", "feature-x"):
            listing += f"worktree {self.container / branch}\nHEAD abc\nbranch refs/heads/{branch}\n\n"
        self.git.on("worktree", "list", result=ok(listing))

        with self.assertLogs("claude_gwt.core.session_orchestrator", level="WARNING"):
            targets = await self.orchestrator.list_targets(self.container)
        self.assertEqual([t.branch for t in targets], ["supervisor", "feature-x"])
        self.assertEqual(targets[0].role, Role.SUPERVISOR)
        self.assertEqual(len({t.session_name for t in targets}), 2)

    async def test_switch_by_index_outside_tmux(self):
        result = await self.orchestrator.switch_to("2", self.container)
        self.assertEqual(result.action, SwitchAction.CHANGE_DIRECTORY)
        self.assertEqual(result.branch, "bravo")
        self.assertEqual(result.working_directory, str(self.container / "bravo"))
        self.assertEqual(self.tmux.commands("switch-client"), [])

    async def test_switch_by_branch_inside_tmux(self):
        self.environ["TMUX"] = "/tmp/tmux-0/default,1,0"
        self.existing_sessions("delta")
        result = await self.orchestrator.switch_to("delta", self.container)
        self.assertEqual(result.action, SwitchAction.SWITCHED)
        self.assertEqual(self.tmux.commands("switch-client"), [["switch-client", "-t", "=cgwt-app--delta"]])

    async def test_switch_to_supervisor_alias(self):
        result = await self.orchestrator.switch_to("sup", self.container)
        self.assertEqual(result.session_name, "cgwt-app--supervisor")

    async def test_switch_to_unknown_target(self):
        with self.assertRaises(TargetNotFoundError) as ctx:
            await self.orchestrator.switch_to("zulu", self.container)
        self.assertEqual(ctx.exception.alternatives[0], "0: supervisor")
        self.assertEqual(len(ctx.exception.alternatives), 6)
        with self.assertRaises(TargetNotFoundError):
            await self.orchestrator.switch_to("42", self.container)

    async def test_shutdown_all(self):
        self.existing_sessions("supervisor", "alpha", "bravo")
        report = await self.orchestrator.shutdown_all("app")
        killed = [call[2] for call in self.tmux.commands("kill-session")]
        self.assertEqual(killed, ["=cgwt-app--alpha", "=cgwt-app--bravo", "=cgwt-app--supervisor"])
        self.assertTrue(report.ok)

    async def test_enter_supervisor_mode_inside_tmux(self):
        self.environ["TMUX"] = "/tmp/tmux-0/default,1,0"
        self.git.on("rev-parse", "--git-common-dir", result=ok(f"{self.container / '.bare'}\n"))
        report = await self.orchestrator.enter_supervisor_mode(self.container / "alpha")

        self.assertEqual(report.supervisor_session, "cgwt-app--supervisor")
        self.assertEqual([call[3] for call in self.tmux.commands("new-session")], ["cgwt-app--supervisor"])
        self.assertEqual(self.tmux.calls[-1], ["switch-client", "-t", "=cgwt-app--supervisor"])

    async def test_enter_supervisor_mode_outside_tmux_launches_everything(self):
        with patch.object(TmuxDriver, "attach_session", return_value=0) as attach:
            report = await self.orchestrator.enter_supervisor_mode(self.container)
        attach.assert_awaited_once_with("cgwt-app--supervisor")
        self.assertEqual(report.sessions.targeted, 5)
        self.assertTrue(report.attached)


class TestOrchestrationContext(unittest.IsolatedAsyncioTestCase):
    """Test OrchestrationContext wiring and instance lifecycle"""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.config = GWTConfig(assistant_command=sys.executable, assistant_args=["-c", IDLE_SCRIPT],
                                grace_period_seconds=1)

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def make_context(self, config=None) -> OrchestrationContext:
        return OrchestrationContext.create(self.test_dir, config=config or self.config,
                                           git=FakeRunner("git"), tmux=FakeRunner("tmux"),
                                           configure_logging=False)

    async def test_contexts_are_independent(self):
        first, second = self.make_context(), self.make_context()
        self.assertIsNot(first.instances, second.instances)
        self.assertIs(first.orchestrator.sessions, first.sessions)
        self.assertEqual(first.base_path, Path(self.test_dir).resolve())

    async def test_create_applies_logging_config(self):
        log_file = Path(self.test_dir) / "logs" / "cgwt.log"
        config = GWTConfig(log_level="DEBUG", log_file=str(log_file))
        OrchestrationContext.create(self.test_dir, config=config, git=FakeRunner("git"), tmux=FakeRunner("tmux"))

        package_logger = logging.getLogger(ROOT_LOGGER_NAME)
        try:
            self.assertEqual(package_logger.level, logging.DEBUG)
            self.assertTrue(any(isinstance(h, logging.handlers.RotatingFileHandler)
                                for h in package_logger.handlers))
            self.assertTrue(log_file.parent.is_dir())
        finally:
            for handler in list(package_logger.handlers):
                package_logger.removeHandler(handler)
                handler.close()
            package_logger.setLevel(logging.NOTSET)
            package_logger.propagate = True

    async def test_classify(self):
        context = self.make_context()
        self.assertEqual((await context.classify()).kind, DirectoryKind.EMPTY)

    async def test_spawn_and_close(self):
        async with self.make_context() as context:
            supervisor = await context.spawn_instance(Role.SUPERVISOR, self.test_dir, "supervisor")
            child = await context.spawn_instance(Role.CHILD, self.test_dir, "main", parent_id=supervisor.id)
            self.assertTrue(supervisor.is_running)
            self.assertIn(child.id, supervisor.child_registry)

            with self.assertRaises(InstanceAlreadyRunningError):
                await context.spawn_instance(Role.SUPERVISOR, self.test_dir, "supervisor")
            self.assertEqual(len(context.instances), 2)

        self.assertFalse(supervisor.is_running)
        self.assertFalse(child.is_running)
        self.assertEqual(len(context.instances), 0)

    async def test_failed_spawn_is_unregistered(self):
        config = GWTConfig(assistant_command=str(Path(self.test_dir) / "missing-binary"))
        context = self.make_context(config)
        with self.assertRaises(InstanceError):
            await context.spawn_instance(Role.SUPERVISOR, self.test_dir, "supervisor")
        self.assertEqual(len(context.instances), 0)
        await context.close()


if __name__ == '__main__':
    unittest.main()
