#!/usr/bin/env python3
"""
Configuration settings for kubeprep
Centralizes pinned versions, host requirements and paths with
environment-specific and file-based overrides
"""

import os
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Any, Union

from ..utils.helpers import (
    ConfigurationError, load_yaml, minor_version, validate_cidr, validate_ip_address, validate_version
)

class Environment(Enum):
    """Application environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"

class LogLevel(Enum):
    """Logging levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

@dataclass
class FlaskConfig:
    """Flask application configuration"""
    secret_key: str = "dev-secret-key-change-in-production"
    debug: bool = False
    testing: bool = False
    host: str = "127.0.0.1"
    port: int = 5000
    max_content_length: int = 1024 * 1024

@dataclass
class K8sConfig:
    """Kubernetes release and cluster network defaults"""
    version: str = "1.33.4"
    package_revision: str = "1.1"

    # Network configuration
    pod_cidr: str = "10.244.0.0/16"
    service_cidr: str = "10.96.0.0/12"

    # Advertise address; detected from the routing table when unset
    advertise_address: Optional[str] = None
    advertise_probe_address: str = "8.8.8.8"

    # Timeouts (seconds)
    readiness_timeout: int = 300
    init_timeout: int = 900
    image_pull_timeout: int = 900

    @property
    def package_version(self) -> str:
        return f"{self.version}-{self.package_revision}"

    @property
    def apt_repository(self) -> str:
        return f"https://pkgs.k8s.io/core:/stable:/v{minor_version(self.version)}/deb/"

@dataclass
class CNIConfig:
    """Network overlay (Flannel) configuration"""
    name: str = "flannel"
    version: str = "v0.26.7"
    release_url: str = "https://github.com/flannel-io/flannel/releases"

    @property
    def floating(self) -> bool:
        return self.version == "latest"

    @property
    def manifest_url(self) -> str:
        if self.floating:
            return f"{self.release_url}/latest/download/kube-flannel.yml"
        return f"{self.release_url}/download/{self.version}/kube-flannel.yml"

@dataclass
class ToolchainConfig:
    """Go toolchain installation"""
    go_version: str = "1.22.5"
    install_root: str = "/usr/local"
    download_url: str = "https://go.dev/dl"
    profile_path: str = "~/.bashrc"
    download_timeout: int = 600

    @property
    def go_root(self) -> Path:
        return Path(self.install_root) / "go"

    @property
    def go_bin(self) -> Path:
        return self.go_root / "bin"

@dataclass
class RuntimeConfig:
    """containerd installation"""
    config_path: str = "/etc/containerd/config.toml"
    docker_repository: str = "https://download.docker.com/linux"
    keyring_path: str = "/usr/share/keyrings/docker-archive-keyring.gpg"
    sources_list: str = "/etc/apt/sources.list.d/docker.list"

@dataclass
class HostRequirements:
    """Minimum host resources"""
    min_memory_gb: int = 2
    min_cpus: int = 2
    supported_os: List[str] = field(default_factory=lambda: ["ubuntu", "debian"])
    system_packages: List[str] = field(default_factory=lambda: [
        "apt-transport-https", "ca-certificates", "curl", "software-properties-common",
        "gnupg2", "lsb-release", "wget", "git", "build-essential",
    ])

@dataclass
class ResetConfig:
    """Cluster reset behaviour"""
    drain_timeout: int = 120
    drain_retries: int = 3
    drain_retry_delay: int = 5
    state_directories: List[str] = field(default_factory=lambda: [
        "/etc/kubernetes/", "~/.kube/", "/var/lib/etcd/",
    ])

@dataclass
class StorageConfig:
    """Local paths used by kubeprep"""
    home: str = "~/.local/state/kubeprep"
    join_script: str = "join-worker-node.sh"
    max_log_size_mb: int = 10
    max_log_files: int = 5

    @property
    def home_directory(self) -> Path:
        return Path(self.home).expanduser()

    @property
    def logs_directory(self) -> Path:
        return self.home_directory / "logs"

    @property
    def runs_directory(self) -> Path:
        return self.home_directory / "runs"

    @property
    def join_script_path(self) -> Path:
        return Path(self.join_script).expanduser().absolute()

class Settings:
    """Main settings class with environment-specific configurations"""

    # Sections that may be overridden from a YAML file
    SECTIONS = ("flask", "k8s", "cni", "toolchain", "runtime", "host", "reset", "storage")

    def __init__(self):
        self.environment = Environment(os.getenv("ENVIRONMENT", "development"))
        self.debug = os.getenv("DEBUG", "false").lower() == "true"

        self.flask = self._get_flask_config()
        self.k8s = self._get_k8s_config()
        self.cni = CNIConfig(version=os.getenv("FLANNEL_VERSION", CNIConfig.version))
        self.toolchain = ToolchainConfig(
            go_version=os.getenv("GO_VERSION", ToolchainConfig.go_version),
            profile_path=os.getenv("SHELL_PROFILE", ToolchainConfig.profile_path),
        )
        self.runtime = RuntimeConfig()
        self.host = HostRequirements(
            min_memory_gb=int(os.getenv("MIN_MEMORY_GB", str(HostRequirements.min_memory_gb))),
        )
        self.reset = ResetConfig(
            drain_timeout=int(os.getenv("DRAIN_TIMEOUT", str(ResetConfig.drain_timeout))),
            drain_retries=int(os.getenv("DRAIN_RETRIES", str(ResetConfig.drain_retries))),
        )
        self.storage = StorageConfig(
            home=os.getenv("KUBEPREP_HOME", StorageConfig.home),
            join_script=os.getenv("JOIN_SCRIPT", StorageConfig.join_script),
        )

        # Logging configuration
        self.log_level = LogLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    def _get_flask_config(self) -> FlaskConfig:
        """Get Flask configuration based on environment"""
        config = FlaskConfig()

        if self.environment == Environment.PRODUCTION:
            config.secret_key = os.getenv("SECRET_KEY", config.secret_key)
            config.debug = False
        elif self.environment == Environment.DEVELOPMENT:
            config.debug = self.debug
        elif self.environment == Environment.TESTING:
            config.testing = True
            config.secret_key = "testing-secret-key"

        config.host = os.getenv("FLASK_HOST", config.host)
        config.port = int(os.getenv("FLASK_PORT", str(config.port)))
        return config

    def _get_k8s_config(self) -> K8sConfig:
        """Get Kubernetes configuration"""
        return K8sConfig(
            version=os.getenv("K8S_VERSION", K8sConfig.version),
            package_revision=os.getenv("K8S_PACKAGE_REVISION", K8sConfig.package_revision),
            pod_cidr=os.getenv("POD_CIDR", K8sConfig.pod_cidr),
            service_cidr=os.getenv("SERVICE_CIDR", K8sConfig.service_cidr),
            advertise_address=os.getenv("ADVERTISE_ADDRESS") or None,
            advertise_probe_address=os.getenv("ADVERTISE_PROBE_ADDRESS", K8sConfig.advertise_probe_address),
            readiness_timeout=int(os.getenv("READINESS_TIMEOUT", str(K8sConfig.readiness_timeout))),
        )

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """Apply a {section: {field: value}} mapping onto the current settings"""
        for section_name, values in overrides.items():
            if section_name not in self.SECTIONS:
                raise ConfigurationError(f"Unknown configuration section: {section_name}")
            if not isinstance(values, dict):
                raise ConfigurationError(f"Section '{section_name}' must be a mapping")

            section = getattr(self, section_name)
            known = {f.name for f in fields(section)}
            for key, value in values.items():
                if key not in known:
                    raise ConfigurationError(f"Unknown setting: {section_name}.{key}")

                # Optional settings default to None and take a string
                current = getattr(section, key)
                expected = str if current is None else type(current)
                unset = value is None and current is None
                if not unset and (not isinstance(value, expected) or
                                  isinstance(value, bool) != isinstance(current, bool)):
                    raise ConfigurationError(
                        f"Setting {section_name}.{key} must be {expected.__name__}, "
                        f"got {type(value).__name__}"
                    )
                setattr(section, key, value)

    def load_file(self, path: Union[str, Path]) -> None:
        """Load overrides from a YAML file"""
        self.apply_overrides(load_yaml(path))

    def validate(self) -> List[str]:
        """Validate configuration and return any errors"""
        errors = []

        if not validate_version(self.k8s.version):
            errors.append(f"Invalid Kubernetes version: {self.k8s.version}")

        if not validate_version(self.toolchain.go_version):
            errors.append(f"Invalid Go version: {self.toolchain.go_version}")

        for label, cidr in (("pod", self.k8s.pod_cidr), ("service", self.k8s.service_cidr)):
            if not validate_cidr(cidr):
                errors.append(f"Invalid {label} CIDR: {cidr}")

        if self.k8s.advertise_address and not validate_ip_address(self.k8s.advertise_address):
            errors.append(f"Invalid advertise address: {self.k8s.advertise_address}")

        if self.k8s.readiness_timeout <= 0:
            errors.append("Readiness timeout must be positive")

        if self.reset.drain_retries < 0:
            errors.append("Drain retries cannot be negative")

        if (self.environment == Environment.PRODUCTION and
                self.flask.secret_key == "dev-secret-key-change-in-production"):
            errors.append("SECRET_KEY must be set in production environment")

        return errors

    def __str__(self) -> str:
        return f"Settings(environment={self.environment.value}, k8s={self.k8s.version})"

# Global settings instance
settings = Settings()

__all__ = [
    'settings',
    'Settings',
    'Environment',
    'LogLevel',
    'FlaskConfig',
    'K8sConfig',
    'CNIConfig',
    'ToolchainConfig',
    'RuntimeConfig',
    'HostRequirements',
    'ResetConfig',
    'StorageConfig',
]
