#!/usr/bin/env python3
"""
Utility functions and helpers for kubeprep
Common functionality used across the workflows
"""

import os
import sys
import time
import yaml
import shutil
import subprocess
import ipaddress
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Any, Union
import logging

logger = logging.getLogger(__name__)

# ===============================
# Error Handling Utilities
# ===============================

class KubeprepError(Exception):
    """Base exception for kubeprep"""
    pass

class ConfigurationError(KubeprepError):
    """Configuration related errors"""
    pass

class PreconditionError(KubeprepError):
    """Host is not in a state the workflow can start from"""
    pass

class ConfirmationDeclined(PreconditionError):
    """Operator did not confirm a destructive action"""
    pass

class WorkflowError(KubeprepError):
    """Workflow related errors"""
    pass

class CommandError(WorkflowError):
    """An external command exited non-zero"""

    def __init__(self, command: str, exit_code: int, output: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.output = output
        message = f"Command failed (exit {exit_code}): {command}"
        if output:
            message += f": {output}"
        super().__init__(message)

# ===============================
# System & Environment Utilities
# ===============================

@dataclass
class CommandResult:
    """Outcome of an external command"""
    success: bool
    exit_code: int
    stdout: str
    stderr: str
    duration: float
    command: str

    @property
    def output(self) -> str:
        return self.stdout if self.success else (self.stderr or self.stdout)

    def __str__(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        return f"{status} ({self.exit_code}): {self.command}"

def get_system_info(os_release: Union[str, Path] = '/etc/os-release') -> Dict[str, str]:
    """Get system information"""
    info = {}

    try:
        if os.path.exists(os_release):
            with open(os_release, 'r') as f:
                for line in f:
                    if '=' in line:
                        key, value = line.strip().split('=', 1)
                        info[key.lower()] = value.strip('"')

        info['python_version'] = sys.version.split()[0]
        info['architecture'] = os.uname().machine
        info['kernel'] = os.uname().release

    except Exception as e:
        logger.warning(f"Could not get full system info: {e}")

    return info

def check_command_exists(command: str) -> bool:
    """Check if a command exists in PATH"""
    return shutil.which(command) is not None

def run_command(
    command: str,
    timeout: int = 300,
    input_data: Optional[str] = None,
    shell: bool = True,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None
) -> CommandResult:
    """
    Run system command with comprehensive error handling

    Args:
        command: Command to execute
        timeout: Command timeout in seconds
        input_data: Text fed to the command's stdin
        shell: Whether to use shell
        cwd: Working directory
        env: Environment variables

    Returns:
        CommandResult; a non-zero exit is reported, never raised
    """
    start_time = time.time()
    try:
        logger.debug(f"Executing command: {command}")

        result = subprocess.run(
            command,
            shell=shell,
            capture_output=True,
            text=True,
            input=input_data,
            timeout=timeout,
            cwd=cwd,
            env=env
        )

        success = result.returncode == 0
        stdout = result.stdout.strip() if result.stdout else ""
        stderr = result.stderr.strip() if result.stderr else ""

        if success:
            logger.debug(f"Command succeeded: {command}")
        else:
            logger.debug(f"Command failed (exit {result.returncode}): {command}")

        return CommandResult(success, result.returncode, stdout, stderr,
                             time.time() - start_time, command)

    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout}s: {command}")
        return CommandResult(False, 124, "", f"Command timed out after {timeout} seconds",
                             time.time() - start_time, command)

    except OSError as e:
        logger.error(f"Unexpected error running command '{command}': {e}")
        return CommandResult(False, 127, "", str(e), time.time() - start_time, command)

# ===============================
# Network & Validation Utilities
# ===============================

def validate_ip_address(ip: str) -> bool:
    """Validate IP address format"""
    try:
        ipaddress.ip_address(ip)
        return True
    except ValueError:
        return False

def validate_cidr(cidr: str) -> bool:
    """Validate CIDR notation"""
    try:
        ipaddress.ip_network(cidr, strict=False)
        return True
    except ValueError:
        return False

def validate_version(version: str) -> bool:
    """Validate a full x.y.z release version"""
    pattern = re.compile(r'^\d+\.\d+\.\d+$')
    return pattern.match(version) is not None

def minor_version(version: str) -> str:
    """'1.33.4' -> '1.33'"""
    return '.'.join(version.split('.')[:2])

# ===============================
# File & Configuration Utilities
# ===============================

def ensure_directory(path: Union[str, Path], mode: int = 0o755) -> bool:
    """Ensure directory exists with proper permissions"""
    try:
        Path(path).mkdir(parents=True, exist_ok=True, mode=mode)
        return True
    except Exception as e:
        logger.error(f"Failed to create directory {path}: {e}")
        return False

def read_file(file_path: Union[str, Path], encoding: str = 'utf-8') -> Optional[str]:
    """Read file content, None when it does not exist or is unreadable"""
    try:
        with open(file_path, 'r', encoding=encoding) as f:
            return f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"Failed to read file {file_path}: {e}")
        return None

def write_file(
    file_path: Union[str, Path],
    content: str,
    encoding: str = 'utf-8',
    mode: int = 0o644
) -> None:
    """Write file content and set its mode"""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'w', encoding=encoding) as f:
        f.write(content)

    os.chmod(file_path, mode)

def load_yaml(file_path: Union[str, Path]) -> Dict[str, Any]:
    """Load a YAML mapping"""
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {file_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {file_path} must contain a mapping")
    return data

# ===============================
# String & Data Utilities
# ===============================

def format_duration(seconds: float) -> str:
    """Format duration in seconds to human readable format"""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"

def truncate_string(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """Truncate string to maximum length"""
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix

class temp_directory:
    """Context manager for temporary directory"""

    def __init__(self, prefix: str = "kubeprep-", cleanup: bool = True):
        self.prefix = prefix
        self.cleanup = cleanup
        self.path = None

    def __enter__(self) -> Path:
        import tempfile
        self.path = Path(tempfile.mkdtemp(prefix=self.prefix))
        return self.path

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.cleanup and self.path and self.path.exists():
            try:
                shutil.rmtree(self.path)
            except OSError as e:
                logger.warning(f"Failed to cleanup temp directory {self.path}: {e}")

__all__ = [
    # System utilities
    'CommandResult', 'get_system_info', 'check_command_exists', 'run_command',

    # Validation utilities
    'validate_ip_address', 'validate_cidr', 'validate_version', 'minor_version',

    # File utilities
    'ensure_directory', 'read_file', 'write_file', 'load_yaml',

    # String utilities
    'format_duration', 'truncate_string',

    # Context managers
    'temp_directory',

    # Error handling
    'KubeprepError', 'ConfigurationError', 'PreconditionError',
    'ConfirmationDeclined', 'WorkflowError', 'CommandError',
]
