import json
import pytest
from unittest.mock import patch, MagicMock

from kubeprep.core.state import ManagedFile
from kubeprep.core.workflow import (
    BaseWorkflow, WorkflowStep, StepStatus, WorkflowStatus, WorkflowProgress, StepResult,
    create_workflow
)
from kubeprep.utils.helpers import CommandError, ConfirmationDeclined, PreconditionError
from kubeprep.workflows.setup_env import EnvironmentSetupWorkflow
from kubeprep.workflows.cluster_init import ClusterInitWorkflow
from kubeprep.workflows.cluster_reset import ClusterResetWorkflow

from conftest import FakeHost, ok, fail

class DummyWorkflow(BaseWorkflow):
    name = "dummy"

    def __init__(self, options=None, steps=None, check_error=None):
        super().__init__(options)
        self._steps = steps or []
        self.check_error = check_error

    def pre_checks(self):
        if self.check_error:
            raise self.check_error

    def define_steps(self):
        return self._steps

@pytest.fixture
def make_workflow(make_options):
    def factory(steps=None, check_error=None, **kwargs):
        workflow = DummyWorkflow(make_options(**kwargs), steps=steps, check_error=check_error)
        workflow.logger = MagicMock()
        return workflow
    return factory

def step(name, function, **kwargs):
    return WorkflowStep(name=name, description="", function=function, **kwargs)

def test_execute_step_success(make_workflow):
    workflow = make_workflow()
    result = workflow.execute_step(step("one", lambda: True))
    assert result.status == StepStatus.SUCCESS
    assert result.attempts == 1

def test_execute_step_skipped(make_workflow):
    workflow = make_workflow()
    result = workflow.execute_step(step("one", lambda: StepStatus.SKIPPED))
    assert result.status == StepStatus.SKIPPED

def test_execute_step_command_error_keeps_exit_code(make_workflow):
    def broken():
        raise CommandError("sudo apt-get update", 100, "E: lock held")

    result = make_workflow().execute_step(step("one", broken))
    assert result.status == StepStatus.FAILED
    assert result.exit_code == 100
    assert "apt-get update" in result.error_message

def test_execute_step_fails_fast_by_default(make_workflow):
    function = MagicMock(return_value=False)
    result = make_workflow().execute_step(step("one", function))
    assert result.status == StepStatus.FAILED
    assert function.call_count == 1

@patch('kubeprep.core.workflow.time.sleep')
def test_execute_step_retries(mock_sleep, make_workflow):
    function = MagicMock(side_effect=[False, CommandError("cmd", 2), True])
    result = make_workflow().execute_step(step("one", function, max_retries=3, retry_delay=5))
    assert result.status == StepStatus.SUCCESS
    assert result.attempts == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [5, 10]

@patch('kubeprep.core.workflow.time.sleep')
def test_execute_step_retries_exhausted(mock_sleep, make_workflow):
    function = MagicMock(return_value=False)
    result = make_workflow().execute_step(step("one", function, max_retries=2))
    assert result.status == StepStatus.FAILED
    assert result.attempts == 3
    assert function.call_count == 3

def test_run_success(make_workflow):
    workflow = make_workflow(steps=[step("one", lambda: True), step("two", lambda: StepStatus.SKIPPED)])
    assert workflow.run() is True
    assert workflow.progress.status == WorkflowStatus.SUCCESS
    assert workflow.progress.exit_code == 0
    assert [r.status for r in workflow.progress.step_results] == [StepStatus.SUCCESS, StepStatus.SKIPPED]

def test_run_stops_at_first_failed_required_step(make_workflow):
    third = MagicMock(return_value=True)

    def broken():
        raise CommandError("sudo kubeadm init", 3, "preflight failed")

    workflow = make_workflow(steps=[step("one", lambda: True), step("two", broken), step("three", third)])
    assert workflow.run() is False
    assert workflow.progress.status == WorkflowStatus.FAILED
    assert workflow.progress.exit_code == 3
    assert "two" in workflow.progress.error_message
    third.assert_not_called()

def test_run_continues_after_optional_failure(make_workflow):
    workflow = make_workflow(steps=[
        step("one", lambda: False, required=False),
        step("two", lambda: True),
    ])
    assert workflow.run() is True
    assert workflow.progress.step_results[0].status == StepStatus.FAILED
    assert workflow.progress.step_results[1].status == StepStatus.SUCCESS

def test_run_precondition_failure_runs_no_step(make_workflow):
    function = MagicMock(return_value=True)
    workflow = make_workflow(steps=[step("one", function)], check_error=PreconditionError("no kubeadm"))
    assert workflow.run() is False
    assert workflow.progress.status == WorkflowStatus.FAILED
    assert workflow.progress.exit_code == 1
    function.assert_not_called()

def test_run_declined_confirmation_is_aborted(make_workflow):
    workflow = make_workflow(steps=[step("one", lambda: True)], check_error=ConfirmationDeclined("no"))
    assert workflow.run() is False
    assert workflow.progress.status == WorkflowStatus.ABORTED
    assert workflow.progress.exit_code == 1

def test_run_twice_raises(make_workflow):
    workflow = make_workflow()
    workflow.run()
    with pytest.raises(Exception, match="already started"):
        workflow.run()

def test_run_cancelled(make_workflow):
    second = MagicMock(return_value=True)
    workflow = make_workflow()

    def first():
        workflow.cancel()
        return True

    workflow._steps = [step("one", first), step("two", second)]
    assert workflow.run() is False
    assert workflow.progress.status == WorkflowStatus.CANCELLED
    assert workflow.progress.exit_code == 1
    second.assert_not_called()

def test_keyboard_interrupt_propagates(make_workflow):
    def interrupted():
        raise KeyboardInterrupt

    workflow = make_workflow(steps=[step("one", interrupted)])
    with pytest.raises(KeyboardInterrupt):
        workflow.run()
    assert workflow.progress.status == WorkflowStatus.CANCELLED

def test_run_records_progress_file(make_workflow):
    workflow = make_workflow(steps=[step("one", lambda: True)])
    workflow.run()
    record = json.loads(workflow.state_file.read_text())
    assert record["workflow"] == "dummy"
    assert record["status"] == "success"
    assert record["step_results"][0]["step_name"] == "one"
    assert record["step_results"][0]["status"] == "success"

def test_command_timeout_fails_step(make_workflow):
    workflow = make_workflow()
    with patch('kubeprep.core.workflow.run_command',
               return_value=fail(124, "Command timed out after 5s", "sleep 10")) as mock_run:
        result = workflow.execute_step(step("slow", lambda: workflow.run_checked("sleep 10", timeout=5)))
    mock_run.assert_called_once_with("sleep 10", timeout=5, input_data=None)
    assert result.status == StepStatus.FAILED
    assert result.exit_code == 124

def test_resume_skips_completed_steps(make_workflow):
    first = MagicMock(return_value=True)
    failing = MagicMock(side_effect=[False, True])
    workflow = make_workflow(steps=[step("one", first), step("two", failing)])
    assert workflow.run() is False

    resumed = make_workflow(steps=[step("one", first), step("two", failing)], resume=True)
    assert resumed.run() is True
    assert first.call_count == 1
    assert failing.call_count == 2
    assert resumed.progress.step_results[0].status == StepStatus.SKIPPED
    assert resumed.progress.step_results[0].attempts == 0

def test_without_resume_all_steps_run(make_workflow):
    first = MagicMock(return_value=True)
    make_workflow(steps=[step("one", first)]).run()
    make_workflow(steps=[step("one", first)]).run()
    assert first.call_count == 2

def test_resume_after_successful_run_runs_everything(make_workflow):
    first = MagicMock(return_value=True)
    assert make_workflow(steps=[step("one", first)]).run() is True

    resumed = make_workflow(steps=[step("one", first)], resume=True)
    assert resumed.completed_steps() == set()
    assert resumed.run() is True
    assert first.call_count == 2
    assert resumed.progress.step_results[0].status == StepStatus.SUCCESS

@pytest.mark.parametrize("content", ["{not json", "[]"])
def test_completed_steps_ignores_corrupt_record(make_workflow, content):
    workflow = make_workflow()
    workflow.state_file.parent.mkdir(parents=True, exist_ok=True)
    workflow.state_file.write_text(content)
    assert workflow.completed_steps() == set()

JOIN = "kubeadm join 10.0.0.5:6443 --token abcdef.0123456789abcdef"

@patch('kubeprep.workflows.cluster_reset.check_command_exists', return_value=False)
@patch('kubeprep.core.preconditions.check_command_exists', return_value=True)
def test_init_resume_after_reset_bootstraps_again(mock_exists, mock_kubectl,
                                                  make_options, host_facts, non_root):
    def run(workflow):
        workflow.checker._facts = host_facts
        host = FakeHost({
            "ip route get": ok("8.8.8.8 via 10.0.0.1 dev eth0 src 10.0.0.5"),
            "token create": ok(JOIN),
        })
        with patch.object(workflow, 'execute_command', host):
            assert workflow.run() is True
        return host

    init = ClusterInitWorkflow(make_options())
    run(init)
    join_script = init.settings.storage.join_script_path
    assert join_script.exists()

    run(ClusterResetWorkflow(make_options(confirm="yes")))
    assert not join_script.exists()
    assert not init.state_file.exists()

    host = run(ClusterInitWorkflow(make_options(resume=True)))
    assert host.issued("sudo kubeadm init")
    assert host.issued("sudo kubeadm token create --print-join-command")
    assert join_script.read_text() == f"sudo {JOIN}\n"

def test_execute_command_prefixes_sudo(make_workflow):
    workflow = make_workflow()
    with patch('kubeprep.core.workflow.run_command', return_value=ok()) as mock_run:
        workflow.execute_command("apt-get update", sudo=True, timeout=10)
    mock_run.assert_called_once_with("sudo apt-get update", timeout=10, input_data=None)
    workflow.logger.command_executed.assert_called_once()

def test_run_checked_raises_on_failure(make_workflow):
    workflow = make_workflow()
    with patch.object(workflow, 'execute_command', return_value=fail(7, "boom", "false")):
        with pytest.raises(CommandError) as excinfo:
            workflow.run_checked("false")
    assert excinfo.value.exit_code == 7

def test_run_commands_non_critical_failure_continues(make_workflow):
    workflow = make_workflow()
    host = FakeHost({"first": fail()})
    with patch.object(workflow, 'execute_command', host):
        workflow.run_commands([
            {"description": "first", "command": "first", "critical": False},
            {"description": "second", "command": "second"},
        ])
    assert host.commands == ["first", "second"]

def test_run_commands_critical_failure_stops(make_workflow):
    workflow = make_workflow()
    host = FakeHost({"first": fail(5)})
    with patch.object(workflow, 'execute_command', host):
        with pytest.raises(CommandError):
            workflow.run_commands([
                {"description": "first", "command": "first"},
                {"description": "second", "command": "second"},
            ])
    assert host.commands == ["first"]

def test_ensure_file_writes_through_sudo_tee(make_workflow, tmp_path):
    workflow = make_workflow()
    target = tmp_path / "k8s.conf"
    host = FakeHost()
    with patch.object(workflow, 'execute_command', host):
        assert workflow.ensure_file(ManagedFile(str(target), "overlay\n")) is True
    assert host.commands == [f"sudo tee {target} > /dev/null", f"sudo chmod 644 {target}"]
    assert host.inputs[f"sudo tee {target} > /dev/null"] == "overlay\n"

def test_ensure_file_in_sync_is_noop(make_workflow, tmp_path):
    workflow = make_workflow()
    target = tmp_path / "k8s.conf"
    target.write_text("overlay\n")
    host = FakeHost()
    with patch.object(workflow, 'execute_command', host):
        assert workflow.ensure_file(ManagedFile(str(target), "overlay\n")) is False
    assert host.commands == []

@patch('kubeprep.core.workflow.time.sleep')
def test_wait_for_condition(mock_sleep, make_workflow):
    condition = MagicMock(side_effect=[False, False, True])
    assert make_workflow().wait_for_condition(condition, "thing", timeout=60, check_interval=1) is True
    assert condition.call_count == 3

def test_prompt_end_of_input(make_workflow):
    with patch('builtins.input', side_effect=EOFError):
        assert make_workflow().prompt("? ") is None

def test_progress_exit_code():
    progress = WorkflowProgress(workflow="setup", run_id="abc")
    assert progress.exit_code is None
    progress.status = WorkflowStatus.FAILED
    assert progress.exit_code == 1
    progress.failed_exit_code = 100
    assert progress.exit_code == 100
    progress.status = WorkflowStatus.CANCELLED
    assert progress.exit_code == 1

def test_progress_to_dict():
    progress = WorkflowProgress(workflow="init", run_id="abc", total_steps=4, current_step=1)
    progress.step_results.append(StepResult("pull_images", StepStatus.SUCCESS, 1.5))
    data = progress.to_dict()
    assert data["progress_percentage"] == 25.0
    assert data["step_results"][0]["status"] == "success"

def test_create_workflow(make_options):
    assert isinstance(create_workflow("setup", make_options()), EnvironmentSetupWorkflow)
    assert isinstance(create_workflow("init", make_options()), ClusterInitWorkflow)
    assert isinstance(create_workflow("reset", make_options()), ClusterResetWorkflow)
    with pytest.raises(ValueError):
        create_workflow("upgrade", make_options())
