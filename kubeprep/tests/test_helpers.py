import json
import logging
import stat
import pytest

from kubeprep.utils.helpers import (
    run_command, CommandError, validate_cidr, validate_ip_address, validate_version,
    minor_version, read_file, write_file, load_yaml, format_duration, truncate_string,
    ConfigurationError
)
from kubeprep.utils.logger import JSONFormatter, WorkflowLogger

def test_run_command_success():
    result = run_command("echo hello")
    assert result.success is True
    assert result.exit_code == 0
    assert result.output == "hello"

def test_run_command_failure_is_reported():
    result = run_command("echo oops >&2; exit 3")
    assert result.success is False
    assert result.exit_code == 3
    assert result.output == "oops"

def test_run_command_input():
    assert run_command("cat", input_data="overlay\n").stdout == "overlay"

def test_run_command_timeout():
    result = run_command("sleep 5", timeout=1)
    assert result.success is False
    assert result.exit_code == 124

def test_command_error_message():
    error = CommandError("sudo kubeadm init", 1, "preflight")
    assert str(error) == "Command failed (exit 1): sudo kubeadm init: preflight"

@pytest.mark.parametrize("value,expected", [
    ("10.0.0.5", True),
    ("fe80::1", True),
    ("10.0.0.256", False),
    ("", False),
])
def test_validate_ip_address(value, expected):
    assert validate_ip_address(value) is expected

def test_validate_cidr():
    assert validate_cidr("10.244.0.0/16")
    assert not validate_cidr("10.244.0.0/40")

def test_validate_version():
    assert validate_version("1.33.4")
    assert not validate_version("v1.33.4")
    assert not validate_version("1.33")

def test_minor_version():
    assert minor_version("1.33.4") == "1.33"

def test_write_file_sets_mode(tmp_path):
    target = tmp_path / "nested" / "join.sh"
    write_file(target, "sudo kubeadm join\n", mode=0o755)
    assert read_file(target) == "sudo kubeadm join\n"
    assert stat.S_IMODE(target.stat().st_mode) == 0o755

def test_read_file_missing(tmp_path):
    assert read_file(tmp_path / "missing") is None

def test_load_yaml_requires_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigurationError, match="mapping"):
        load_yaml(path)

def test_format_duration():
    assert format_duration(12.34) == "12.3s"
    assert format_duration(90) == "1.5m"
    assert format_duration(7200) == "2.0h"

def test_truncate_string():
    assert truncate_string("abcdef", 5) == "ab..."
    assert truncate_string("abc", 5) == "abc"

def test_json_formatter_includes_context():
    record = logging.LogRecord("kubeprep.setup.abc", logging.INFO, __file__, 1, "hello", None, None)
    record.run_id = "abc"
    record.step = "install_go"
    record.category = "workflow"
    record.details = {"command": "go version"}

    entry = json.loads(JSONFormatter().format(record))
    assert entry["run_id"] == "abc"
    assert entry["step"] == "install_go"
    assert entry["extra"] == {"command": "go version"}

def test_workflow_logger_writes_json_file():
    logger = WorkflowLogger("logtest", "setup")
    logger.step_start("install_go", "Install Go")
    logger.command_executed("go version", False, "not found", 127, 0.01)
    handler = next(h for h in logger.logger.handlers if isinstance(h, logging.FileHandler))
    path = handler.baseFilename
    logger.close()

    with open(path) as f:
        entries = [json.loads(line) for line in f]
    assert entries[0]["step"] == "install_go"
    assert entries[1]["extra"]["exit_code"] == 127
    assert entries[1]["level"] == "WARNING"
