#!/usr/bin/env python3
"""
Workflow engine for kubeprep
Runs an ordered list of steps against the local host and records a typed
result for each of them
"""

import time
import uuid
import json
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any, Callable, Set, Union
from enum import Enum
from pathlib import Path

from ..config.settings import settings as global_settings, Settings
from ..utils.helpers import (
    run_command, CommandResult, PreconditionError, ConfirmationDeclined,
    WorkflowError, CommandError, format_duration, read_file, write_file
)
from ..utils.logger import get_workflow_logger, log_manager
from .preconditions import PreconditionChecker
from .state import ManagedFile

class StepStatus(Enum):
    """Outcome of a single step"""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"

class WorkflowStatus(Enum):
    """Workflow lifecycle states"""
    PENDING = "pending"
    VALIDATING = "validating"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    ABORTED = "aborted"
    CANCELLED = "cancelled"

@dataclass
class WorkflowOptions:
    """Per-run choices made by the operator"""
    run_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    resume: bool = False
    single_node: Optional[bool] = None
    confirm: Optional[str] = None
    interactive: bool = False
    settings: Optional[Settings] = None

@dataclass
class WorkflowStep:
    """Represents a single workflow step"""
    name: str
    description: str
    function: Callable[[], Union[bool, StepStatus]]
    required: bool = True
    max_retries: int = 0
    retry_delay: int = 5

@dataclass
class StepResult:
    """Result of a workflow step"""
    step_name: str
    status: StepStatus
    duration: float
    attempts: int = 1
    error_message: Optional[str] = None
    exit_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['status'] = self.status.value
        return result

@dataclass
class WorkflowProgress:
    """Track workflow progress"""
    workflow: str
    run_id: str
    current_step: int = 0
    total_steps: int = 0
    status: WorkflowStatus = WorkflowStatus.PENDING
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    error_message: Optional[str] = None
    failed_exit_code: Optional[int] = None
    step_results: List[StepResult] = field(default_factory=list)

    @property
    def progress_percentage(self) -> float:
        if self.total_steps == 0:
            return 0.0
        return (self.current_step / self.total_steps) * 100

    @property
    def duration(self) -> Optional[float]:
        if not self.start_time:
            return None
        end = self.end_time or time.time()
        return end - self.start_time

    @property
    def exit_code(self) -> Optional[int]:
        """Process exit status for this run, None while it is still going"""
        if self.status == WorkflowStatus.SUCCESS:
            return 0
        if self.status in (WorkflowStatus.PENDING, WorkflowStatus.VALIDATING, WorkflowStatus.RUNNING):
            return None
        if self.status == WorkflowStatus.FAILED and self.failed_exit_code:
            return self.failed_exit_code
        return 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            'workflow': self.workflow,
            'run_id': self.run_id,
            'current_step': self.current_step,
            'total_steps': self.total_steps,
            'status': self.status.value,
            'progress_percentage': self.progress_percentage,
            'duration': self.duration,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'error_message': self.error_message,
            'exit_code': self.exit_code,
            'step_results': [result.to_dict() for result in self.step_results]
        }

    def save_to_file(self, file_path: Union[str, Path]) -> None:
        write_file(file_path, json.dumps(self.to_dict(), indent=2, default=str))

class BaseWorkflow(ABC):
    """Abstract base class for kubeprep workflows"""

    name = "workflow"
    description = ""

    def __init__(self, options: Optional[WorkflowOptions] = None):
        self.options = options or WorkflowOptions()
        self.settings = self.options.settings or global_settings
        self.progress = WorkflowProgress(workflow=self.name, run_id=self.options.run_id)
        self.logger = get_workflow_logger(self.options.run_id, self.name)
        self.checker = PreconditionChecker(self.logger, self, self.settings.host)

        # Workflow state
        self.steps: List[WorkflowStep] = []
        self.cancelled = False
        self.lock = threading.Lock()

    @abstractmethod
    def define_steps(self) -> List[WorkflowStep]:
        """Define workflow steps (implement in subclasses)"""
        pass

    @abstractmethod
    def pre_checks(self) -> None:
        """Raise PreconditionError when the host cannot run this workflow"""
        pass

    def summary(self) -> None:
        """Closing report printed after a successful run"""
        pass

    @property
    def state_file(self) -> Path:
        return self.run_record(self.name)

    def run_record(self, name: str) -> Path:
        """Path of the last-run record of the named workflow"""
        return self.settings.storage.runs_directory / f"{name}-last.json"

    def execute_step(self, step: WorkflowStep) -> StepResult:
        """Execute a single step with retry logic"""
        start_time = time.time()
        error_message = None
        exit_code = None
        attempt = 0

        self.logger.step_start(step.name, step.description)

        for attempt in range(1, step.max_retries + 2):
            if self.cancelled:
                error_message = "Cancelled"
                break

            if attempt > 1:
                self.logger.warning(f"⚠️  Retry {attempt - 1}/{step.max_retries} for: {step.name}")
                time.sleep(step.retry_delay * (attempt - 1))  # Progressive delay

            try:
                outcome = step.function()
            except CommandError as e:
                error_message = str(e)
                exit_code = e.exit_code
            except Exception as e:
                error_message = str(e)
                exit_code = 1
            else:
                status = self._as_status(outcome)
                if status != StepStatus.FAILED:
                    duration = time.time() - start_time
                    if status == StepStatus.SKIPPED:
                        self.logger.step_skipped(step.name, "already in desired state")
                    else:
                        self.logger.step_success(step.name, duration)
                    return StepResult(step.name, status, duration, attempts=attempt)
                error_message = "Step reported failure"
                exit_code = 1

            if attempt <= step.max_retries:
                self.logger.warning(f"❌ Step failed: {step.name}: {error_message}")

        duration = time.time() - start_time
        self.logger.step_error(step.name, error_message, duration)
        return StepResult(
            step_name=step.name,
            status=StepStatus.FAILED,
            duration=duration,
            attempts=attempt,
            error_message=error_message,
            exit_code=exit_code
        )

    @staticmethod
    def _as_status(outcome: Union[bool, StepStatus, None]) -> StepStatus:
        if isinstance(outcome, StepStatus):
            return outcome
        return StepStatus.SUCCESS if outcome else StepStatus.FAILED

    def execute_command(
        self,
        command: str,
        sudo: bool = False,
        timeout: int = 300,
        input_data: Optional[str] = None
    ) -> CommandResult:
        """Execute command on the local host"""
        if sudo:
            command = f"sudo {command}"

        result = run_command(command, timeout=timeout, input_data=input_data)
        self.logger.command_executed(
            command, result.success, result.output, result.exit_code, result.duration
        )
        return result

    def run_checked(
        self,
        command: str,
        sudo: bool = False,
        timeout: int = 300,
        input_data: Optional[str] = None
    ) -> CommandResult:
        """Execute command and raise CommandError unless it succeeds"""
        result = self.execute_command(command, sudo=sudo, timeout=timeout, input_data=input_data)
        if not result.success:
            raise CommandError(result.command, result.exit_code, result.output)
        return result

    def run_commands(self, commands: List[Dict[str, Any]]) -> None:
        """Run a list of {description, command, sudo, timeout, critical} entries in order"""
        for cmd in commands:
            self.logger.info(f"  → {cmd['description']}")
            result = self.execute_command(
                cmd['command'],
                sudo=cmd.get('sudo', False),
                timeout=cmd.get('timeout', 300)
            )

            if not result.success:
                if cmd.get('critical', True):
                    raise CommandError(result.command, result.exit_code, result.output)
                self.logger.warning(f"Non-critical command failed: {cmd['description']}")

    def ensure_file(self, managed: ManagedFile) -> bool:
        """Write a managed file through sudo when its content differs; True if written"""
        if managed.in_sync():
            self.logger.info(f"  → {managed.location} already up to date")
            return False

        self.logger.info(f"  → Writing {managed.location}")
        self.run_checked(f"tee {managed.location} > /dev/null", sudo=True, input_data=managed.content)
        self.run_checked(f"chmod {managed.mode:o} {managed.location}", sudo=True)
        return True

    def wait_for_condition(
        self,
        condition_func: Callable[[], bool],
        description: str,
        timeout: int = 300,
        check_interval: int = 5
    ) -> bool:
        """Wait for a condition to be met"""
        self.logger.info(f"⏳ Waiting for: {description}")

        start_time = time.time()
        while time.time() - start_time < timeout:
            if self.cancelled:
                return False

            if condition_func():
                elapsed = time.time() - start_time
                self.logger.info(f"✅ Condition met: {description} (after {elapsed:.1f}s)")
                return True

            remaining = timeout - (time.time() - start_time)
            self.logger.debug(f"  → Still waiting... ({remaining:.0f}s remaining)")
            time.sleep(check_interval)

        self.logger.error(f"❌ Timeout waiting for: {description} ({timeout}s)")
        return False

    def prompt(self, question: str) -> Optional[str]:
        """Read one line from the operator, None on end of input"""
        try:
            return input(question)
        except EOFError:
            return None

    def completed_steps(self) -> Set[str]:
        """Names of steps that finished in the last recorded run"""
        content = read_file(self.state_file)
        if not content:
            return set()

        try:
            previous = json.loads(content)
        except ValueError as e:
            self.logger.warning(f"Ignoring unreadable run record {self.state_file}: {e}")
            return set()
        if not isinstance(previous, dict):
            self.logger.warning(f"Ignoring unreadable run record {self.state_file}")
            return set()

        # Only an unfinished run can be resumed
        if previous.get('status') == WorkflowStatus.SUCCESS.value:
            self.logger.info(f"Last {self.name} run completed, running all steps")
            return set()

        done = (StepStatus.SUCCESS.value, StepStatus.SKIPPED.value)
        return {
            result['step_name'] for result in previous.get('step_results', [])
            if result.get('status') in done
        }

    def save_progress(self) -> None:
        try:
            self.progress.save_to_file(self.state_file)
        except OSError as e:
            self.logger.warning(f"Could not record run state in {self.state_file}: {e}")

    def run(self) -> bool:
        """Main workflow process"""
        with self.lock:
            if self.progress.status != WorkflowStatus.PENDING:
                raise WorkflowError("Workflow already started")
            self.progress.status = WorkflowStatus.VALIDATING

        self.logger.info(f"🎯 Starting {self.name} workflow")
        self.logger.info(f"📋 Run ID: {self.progress.run_id}")
        self.progress.start_time = time.time()

        try:
            try:
                self.pre_checks()
            except ConfirmationDeclined as e:
                self.progress.status = WorkflowStatus.ABORTED
                self.progress.error_message = str(e)
                self.logger.warning(f"❌ {e}")
                return False
            except PreconditionError as e:
                self.progress.status = WorkflowStatus.FAILED
                self.progress.error_message = str(e)
                self.logger.error(f"❌ {e}")
                return False

            self.steps = self.define_steps()
            self.progress.total_steps = len(self.steps)
            completed = self.completed_steps() if self.options.resume else set()
            if completed:
                self.logger.info(f"🔁 Resuming: {len(completed)} step(s) completed previously")

            self.progress.status = WorkflowStatus.RUNNING
            for i, step in enumerate(self.steps):
                self.progress.current_step = i

                if self.cancelled:
                    self.progress.status = WorkflowStatus.CANCELLED
                    self.progress.error_message = "Cancelled by user"
                    return False

                if step.name in completed:
                    self.logger.step_skipped(step.name, "completed in a previous run")
                    self.progress.step_results.append(
                        StepResult(step.name, StepStatus.SKIPPED, 0.0, attempts=0)
                    )
                    continue

                result = self.execute_step(step)
                self.progress.step_results.append(result)

                if result.status == StepStatus.FAILED:
                    if self.cancelled:
                        self.progress.status = WorkflowStatus.CANCELLED
                        self.progress.error_message = "Cancelled by user"
                        return False
                    if step.required:
                        self.progress.status = WorkflowStatus.FAILED
                        self.progress.error_message = f"Required step failed: {step.name}: {result.error_message}"
                        self.progress.failed_exit_code = result.exit_code
                        return False
                    self.logger.warning(f"⚠️  Optional step failed, continuing: {step.name}")

            self.logger.set_step(None)
            self.progress.current_step = len(self.steps)
            self.progress.status = WorkflowStatus.SUCCESS
            self.progress.end_time = time.time()

            self.logger.info(f"🎉 {self.name} workflow completed successfully!")
            self.logger.info(f"⏱️  Total duration: {format_duration(self.progress.duration)}")
            self.summary()
            return True

        except KeyboardInterrupt:
            self.progress.status = WorkflowStatus.CANCELLED
            self.progress.error_message = "Interrupted"
            self.logger.warning("❌ Workflow interrupted by user")
            raise

        finally:
            self.progress.end_time = time.time()
            self.save_progress()
            log_manager.cleanup_workflow_logger(self.progress.run_id, self.name)

    def cancel(self):
        """Cancel workflow; the running step finishes first"""
        with self.lock:
            self.cancelled = True
            self.logger.warning("❌ Workflow cancellation requested")

    def get_progress(self) -> Dict[str, Any]:
        """Get current workflow progress"""
        with self.lock:
            return self.progress.to_dict()

WORKFLOW_NAMES = ("setup", "init", "reset")

def workflow_class(name: str):
    """Resolve a workflow name to its class"""
    if name == "setup":
        from ..workflows.setup_env import EnvironmentSetupWorkflow
        return EnvironmentSetupWorkflow
    elif name == "init":
        from ..workflows.cluster_init import ClusterInitWorkflow
        return ClusterInitWorkflow
    elif name == "reset":
        from ..workflows.cluster_reset import ClusterResetWorkflow
        return ClusterResetWorkflow
    else:
        raise ValueError(f"Unsupported workflow: {name}")

# Factory function for creating workflows
def create_workflow(name: str, options: Optional[WorkflowOptions] = None) -> BaseWorkflow:
    """Factory function to create the named workflow"""
    return workflow_class(name)(options)

__all__ = [
    'StepStatus', 'WorkflowStatus', 'WorkflowOptions', 'WorkflowStep', 'StepResult',
    'WorkflowProgress', 'BaseWorkflow', 'WORKFLOW_NAMES', 'workflow_class', 'create_workflow'
]
