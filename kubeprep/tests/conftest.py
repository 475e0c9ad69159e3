import os
import tempfile

# Settings are read at import time, keep every test run away from the real home
_home = tempfile.mkdtemp(prefix="kubeprep-test-")
os.environ["KUBEPREP_HOME"] = _home
os.environ["ENVIRONMENT"] = "testing"
os.environ["JOIN_SCRIPT"] = os.path.join(_home, "join-worker-node.sh")
os.environ["SHELL_PROFILE"] = os.path.join(_home, ".bashrc")

import pytest
from unittest.mock import patch

from kubeprep.config.settings import Settings
from kubeprep.core.preconditions import HostFacts
from kubeprep.core.state import ManagedFile
from kubeprep.core.workflow import WorkflowOptions
from kubeprep.utils.helpers import CommandResult

def ok(stdout="", command=""):
    return CommandResult(True, 0, stdout, "", 0.0, command)

def fail(exit_code=1, stderr="error", command=""):
    return CommandResult(False, exit_code, "", stderr, 0.0, command)

class FakeHost:
    """Replaces execute_command; answers by command fragment and records every call"""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.commands = []
        self.inputs = {}

    def __call__(self, command, sudo=False, timeout=300, input_data=None):
        if sudo:
            command = f"sudo {command}"
        self.commands.append(command)
        if input_data is not None:
            self.inputs[command] = input_data

        for fragment, response in self.responses.items():
            if fragment in command:
                if response.success:
                    return CommandResult(True, 0, response.stdout, "", 0.0, command)
                return CommandResult(False, response.exit_code, "", response.stderr, 0.0, command)
        return ok(command=command)

    def issued(self, fragment):
        return any(fragment in command for command in self.commands)

    def count(self, fragment):
        return sum(1 for command in self.commands if fragment in command)

@pytest.fixture
def host_facts():
    return HostFacts(
        os_id="ubuntu",
        os_name="Ubuntu 22.04.4 LTS",
        os_codename="jammy",
        memory_gb=4,
        cpu_count=2,
        machine="x86_64"
    )

@pytest.fixture
def test_settings(tmp_path):
    config = Settings()
    config.storage.home = str(tmp_path / "home")
    config.storage.join_script = str(tmp_path / "join-worker-node.sh")
    config.toolchain.profile_path = str(tmp_path / ".bashrc")
    return config

@pytest.fixture
def make_options(test_settings):
    def factory(**kwargs):
        kwargs.setdefault("settings", test_settings)
        return WorkflowOptions(**kwargs)
    return factory

@pytest.fixture
def non_root():
    with patch("kubeprep.core.preconditions.os.geteuid", return_value=1000):
        yield

@pytest.fixture
def files_out_of_sync():
    with patch.object(ManagedFile, "current", return_value=None):
        yield
