#!/usr/bin/env python3
"""
Host precondition checks
Every check raises PreconditionError with an operator-facing diagnostic
"""

import os
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from ..utils.helpers import PreconditionError, check_command_exists, get_system_info, read_file

ARCHITECTURES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}

@dataclass
class HostFacts:
    """Read-only snapshot of the host, gathered once per run"""
    os_id: str
    os_name: str
    os_codename: str
    memory_gb: int
    cpu_count: int
    machine: str

    @property
    def architecture(self) -> str:
        """Debian/Go style architecture name"""
        return ARCHITECTURES.get(self.machine, self.machine)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

def read_memory_gb(meminfo: str = "/proc/meminfo") -> int:
    """Total memory in whole GiB, rounded down"""
    for line in (read_file(meminfo) or "").splitlines():
        if line.startswith("MemTotal:"):
            return int(line.split()[1]) // 1024 // 1024
    return 0

def gather_host_facts(os_release: str = "/etc/os-release", meminfo: str = "/proc/meminfo") -> HostFacts:
    info = get_system_info(os_release)
    return HostFacts(
        os_id=info.get('id', '').lower(),
        os_name=info.get('pretty_name', info.get('name', 'unknown')),
        os_codename=info.get('version_codename', ''),
        memory_gb=read_memory_gb(meminfo),
        cpu_count=os.cpu_count() or 1,
        machine=info.get('architecture', ''),
    )

class PreconditionChecker:
    """Checks run before any mutating action"""

    def __init__(self, logger, runner, requirements):
        self.logger = logger
        self.runner = runner
        self.requirements = requirements
        self._facts: Optional[HostFacts] = None

    @property
    def facts(self) -> HostFacts:
        if self._facts is None:
            self._facts = gather_host_facts()
        return self._facts

    def require_non_root(self):
        if os.geteuid() == 0:
            raise PreconditionError(
                "This workflow should not be run as root. "
                "Run it as a regular user with sudo privileges"
            )

    def require_supported_os(self):
        facts = self.facts
        if facts.os_id not in self.requirements.supported_os:
            supported = "/".join(name.capitalize() for name in self.requirements.supported_os)
            raise PreconditionError(
                f"This workflow is designed for {supported} systems (detected: {facts.os_name or 'unknown'})"
            )

    def require_memory(self):
        minimum = self.requirements.min_memory_gb
        if self.facts.memory_gb < minimum:
            raise PreconditionError(
                f"Insufficient memory. Required: {minimum}GB, Available: {self.facts.memory_gb}GB"
            )

    def warn_cpus(self):
        if self.facts.cpu_count < self.requirements.min_cpus:
            self.logger.warning(
                f"⚠️  Less than {self.requirements.min_cpus} CPUs detected. "
                "Control plane requires at least 2 CPUs."
            )

    def require_command(self, command: str, hint: str = ""):
        if not check_command_exists(command):
            message = f"{command} not found"
            if hint:
                message += f". {hint}"
            raise PreconditionError(message)

    def service_active(self, service: str) -> bool:
        return self.runner.execute_command(f"systemctl is-active --quiet {service}", timeout=30).success

    def require_service_active(self, service: str, hint: str = ""):
        if not self.service_active(service):
            message = f"{service} is not running"
            if hint:
                message += f". {hint}"
            raise PreconditionError(message)

    def ensure_service_started(self, service: str):
        if self.service_active(service):
            return
        self.logger.info(f"🔄 Starting {service} service...")
        result = self.runner.execute_command(f"systemctl start {service}", sudo=True, timeout=60)
        if not result.success:
            raise PreconditionError(f"Failed to start {service}: {result.output}")

    def check_setup_host(self):
        """Environment setup: identity, distribution, resources"""
        self.require_non_root()
        self.require_supported_os()
        self.require_memory()
        self.warn_cpus()

        facts = self.facts
        self.logger.info("✅ System requirements check passed")
        self.logger.info(f"   - OS: {facts.os_name}")
        self.logger.info(f"   - Memory: {facts.memory_gb}GB")
        self.logger.info(f"   - CPUs: {facts.cpu_count}")

__all__ = ['HostFacts', 'gather_host_facts', 'read_memory_gb', 'PreconditionChecker']
