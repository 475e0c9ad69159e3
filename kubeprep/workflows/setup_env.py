#!/usr/bin/env python3
"""
Kubernetes Environment Setup
Prepares a Debian/Ubuntu host for kubeadm: base packages, swap, kernel
networking, Go toolchain, containerd and the pinned Kubernetes packages
"""

import os
from pathlib import Path
from typing import List, Optional

from ..core.workflow import BaseWorkflow, WorkflowStep, StepStatus
from ..core.state import (
    ManagedFile, lines_file, comment_swap_entries, enable_systemd_cgroup, ensure_profile_line
)
from ..utils.helpers import read_file, temp_directory

FSTAB = "/etc/fstab"
MODULES_CONF = "/etc/modules-load.d/k8s.conf"
SYSCTL_CONF = "/etc/sysctl.d/k8s.conf"
KERNEL_MODULES = ["overlay", "br_netfilter"]
SYSCTL_PARAMETERS = [
    "net.bridge.bridge-nf-call-iptables  = 1",
    "net.bridge.bridge-nf-call-ip6tables = 1",
    "net.ipv4.ip_forward                 = 1",
]

KUBERNETES_KEYRING = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
KUBERNETES_SOURCES = "/etc/apt/sources.list.d/kubernetes.list"
KUBELET_DEFAULTS = "/etc/default/kubelet"
KUBERNETES_PACKAGES = ["kubelet", "kubeadm", "kubectl"]

class EnvironmentSetupWorkflow(BaseWorkflow):
    """Host preparation for a kubeadm control plane"""

    name = "setup"
    description = "Prepare the host: packages, swap, kernel networking, Go, containerd, kubeadm/kubelet/kubectl"

    def pre_checks(self) -> None:
        self.logger.info("🔍 Checking system requirements...")
        self.checker.check_setup_host()

    def define_steps(self) -> List[WorkflowStep]:
        return [
            WorkflowStep(
                name="update_system",
                description="Update package index and install base packages",
                function=self.update_system
            ),
            WorkflowStep(
                name="disable_swap",
                description="Disable swap now and across reboots",
                function=self.disable_swap
            ),
            WorkflowStep(
                name="configure_networking",
                description="Load kernel modules and apply bridge/forwarding sysctls",
                function=self.configure_networking
            ),
            WorkflowStep(
                name="install_go",
                description=f"Install Go {self.settings.toolchain.go_version}",
                function=self.install_go
            ),
            WorkflowStep(
                name="install_containerd",
                description="Install and configure containerd",
                function=self.install_containerd
            ),
            WorkflowStep(
                name="install_kubernetes_components",
                description=f"Install kubelet, kubeadm, kubectl {self.settings.k8s.package_version}",
                function=self.install_kubernetes_components
            ),
        ]

    def update_system(self) -> StepStatus:
        """Update system packages"""
        self.logger.info("📦 Updating system packages...")
        packages = " ".join(self.settings.host.system_packages)
        self.run_commands([
            {
                "description": "Update package index",
                "command": "apt-get update",
                "sudo": True,
                "timeout": 600
            },
            {
                "description": "Install required packages",
                "command": f"apt-get install -y {packages}",
                "sudo": True,
                "timeout": 900
            },
        ])
        return StepStatus.SUCCESS

    def swap_active(self) -> bool:
        result = self.execute_command("swapon --show --noheadings", timeout=30)
        # Unknown state is treated as active
        return not result.success or bool(result.stdout.strip())

    def disable_swap(self) -> StepStatus:
        """Disable swap"""
        self.logger.info("💾 Disabling swap...")
        changed = False

        fstab = read_file(FSTAB)
        if fstab is not None:
            changed = self.ensure_file(ManagedFile(FSTAB, comment_swap_entries(fstab)))

        if self.swap_active():
            self.run_checked("swapoff -a", sudo=True)
            changed = True

        return StepStatus.SUCCESS if changed else StepStatus.SKIPPED

    def configure_networking(self) -> StepStatus:
        """Configure kernel modules and sysctl parameters"""
        self.logger.info("🌐 Configuring kernel modules and networking...")

        self.ensure_file(lines_file(MODULES_CONF, KERNEL_MODULES))
        self.run_commands([
            {
                "description": f"Load {module} module",
                "command": f"modprobe {module}",
                "sudo": True
            }
            for module in KERNEL_MODULES
        ])

        self.ensure_file(lines_file(SYSCTL_CONF, SYSCTL_PARAMETERS))
        self.run_commands([
            {
                "description": "Apply sysctl parameters",
                "command": "sysctl --system",
                "sudo": True
            },
        ])
        return StepStatus.SUCCESS

    def installed_go_version(self) -> Optional[str]:
        """Version reported by `go version`, looking in the install root as well as PATH"""
        go_bin = self.settings.toolchain.go_bin
        result = self.execute_command(f"PATH=$PATH:{go_bin} go version", timeout=30)
        if not result.success:
            return None

        fields = result.stdout.split()
        if len(fields) < 3:
            return None
        return fields[2][2:] if fields[2].startswith("go") else fields[2]

    def install_go(self) -> StepStatus:
        """Install the pinned Go toolchain"""
        toolchain = self.settings.toolchain
        version = toolchain.go_version

        installed = self.installed_go_version()
        if installed == version:
            self.logger.info(f"✅ Go {version} is already installed")
            return StepStatus.SKIPPED

        if installed:
            self.logger.info(f"🐹 Replacing Go {installed} with Go {version}...")
        else:
            self.logger.info(f"🐹 Installing Go {version}...")

        archive = f"go{version}.linux-{self.checker.facts.architecture}.tar.gz"
        with temp_directory(prefix="kubeprep-go-") as download_dir:
            target = download_dir / archive
            self.run_commands([
                {
                    "description": f"Download {archive}",
                    "command": f"wget -q -O {target} {toolchain.download_url}/{archive}",
                    "timeout": toolchain.download_timeout
                },
                {
                    "description": "Remove previous Go installation",
                    "command": f"rm -rf {toolchain.go_root}",
                    "sudo": True
                },
                {
                    "description": f"Extract Go into {toolchain.install_root}",
                    "command": f"tar -C {toolchain.install_root} -xzf {target}",
                    "sudo": True,
                    "timeout": 300
                },
            ])

        go_bin = str(toolchain.go_bin)
        profile = Path(toolchain.profile_path).expanduser()
        if ensure_profile_line(profile, f"export PATH=$PATH:{go_bin}", go_bin):
            self.logger.info(f"  → Added {go_bin} to PATH in {profile}")

        if go_bin not in os.environ.get("PATH", "").split(os.pathsep):
            os.environ["PATH"] = os.pathsep.join(filter(None, [os.environ.get("PATH"), go_bin]))

        self.logger.info(f"✅ Go {version} installed")
        return StepStatus.SUCCESS

    def distribution_codename(self) -> str:
        codename = self.checker.facts.os_codename
        if codename:
            return codename
        return self.run_checked("lsb_release -cs", timeout=30).stdout.strip()

    def install_containerd(self) -> StepStatus:
        """Install and configure containerd"""
        self.logger.info("🐳 Installing containerd...")
        runtime = self.settings.runtime
        facts = self.checker.facts
        repository = f"{runtime.docker_repository}/{facts.os_id}"

        self.run_commands([
            {
                "description": "Add Docker GPG key",
                "command": f"curl -fsSL {repository}/gpg | sudo gpg --dearmor --yes -o {runtime.keyring_path}"
            },
        ])
        self.ensure_file(lines_file(runtime.sources_list, [
            f"deb [arch={facts.architecture} signed-by={runtime.keyring_path}] "
            f"{repository} {self.distribution_codename()} stable"
        ]))

        self.run_commands([
            {
                "description": "Update package index",
                "command": "apt-get update",
                "sudo": True,
                "timeout": 600
            },
            {
                "description": "Install containerd",
                "command": "apt-get install -y containerd.io",
                "sudo": True,
                "timeout": 600
            },
            {
                "description": "Create containerd config directory",
                "command": f"mkdir -p {Path(runtime.config_path).parent}",
                "sudo": True
            },
        ])

        self.logger.info("  → Generating containerd configuration")
        default_config = self.run_checked("containerd config default", timeout=60).stdout
        self.ensure_file(ManagedFile(runtime.config_path, enable_systemd_cgroup(default_config) + "\n"))

        self.run_commands([
            {
                "description": "Restart containerd",
                "command": "systemctl restart containerd",
                "sudo": True
            },
            {
                "description": "Enable containerd",
                "command": "systemctl enable containerd",
                "sudo": True
            },
        ])

        self.logger.info("✅ containerd installed and configured")
        return StepStatus.SUCCESS

    def kubernetes_packages_installed(self) -> bool:
        """True when all three packages are installed at the pinned version"""
        result = self.execute_command(
            "dpkg-query -W -f='${Version}\\n' " + " ".join(KUBERNETES_PACKAGES),
            timeout=30
        )
        if not result.success:
            return False

        versions = result.stdout.split()
        return (len(versions) == len(KUBERNETES_PACKAGES) and
                all(version == self.settings.k8s.package_version for version in versions))

    def install_kubernetes_components(self) -> StepStatus:
        """Install Kubernetes components"""
        k8s = self.settings.k8s
        self.logger.info(f"☸️  Installing Kubernetes components v{k8s.version}...")

        self.run_commands([
            {
                "description": "Create apt keyrings directory",
                "command": f"mkdir -p -m 755 {Path(KUBERNETES_KEYRING).parent}",
                "sudo": True
            },
            {
                "description": "Add Kubernetes GPG key",
                "command": f"curl -fsSL {k8s.apt_repository}Release.key | sudo gpg --dearmor --yes -o {KUBERNETES_KEYRING}"
            },
        ])
        self.ensure_file(lines_file(KUBERNETES_SOURCES, [
            f"deb [signed-by={KUBERNETES_KEYRING}] {k8s.apt_repository} /"
        ]))

        if self.kubernetes_packages_installed():
            self.logger.info(f"  → kubelet, kubeadm, kubectl {k8s.package_version} already installed")
        else:
            pinned = " ".join(f"{package}={k8s.package_version}" for package in KUBERNETES_PACKAGES)
            self.run_commands([
                {
                    "description": "Update package index",
                    "command": "apt-get update",
                    "sudo": True,
                    "timeout": 600
                },
                {
                    "description": "Install Kubernetes packages",
                    "command": f"apt-get install -y --allow-change-held-packages {pinned}",
                    "sudo": True,
                    "timeout": 900
                },
            ])

        self.run_commands([
            {
                "description": "Hold Kubernetes packages",
                "command": f"apt-mark hold {' '.join(KUBERNETES_PACKAGES)}",
                "sudo": True
            },
        ])

        self.ensure_file(ManagedFile(KUBELET_DEFAULTS, 'KUBELET_EXTRA_ARGS="--cgroup-driver=systemd"\n'))
        self.run_checked("systemctl enable kubelet", sudo=True)

        for command in ("kubeadm version -o short", "kubelet --version", "kubectl version --client"):
            result = self.execute_command(command, timeout=30)
            if result.success:
                self.logger.info(f"  → {result.stdout.splitlines()[0] if result.stdout else command}")

        self.logger.info("✅ Kubernetes components installed")
        return StepStatus.SUCCESS

    def summary(self) -> None:
        self.logger.info("=" * 50)
        self.logger.info("Environment setup completed")
        self.logger.info(f"  Kubernetes: {self.settings.k8s.version}")
        self.logger.info(f"  Go:         {self.settings.toolchain.go_version}")
        self.logger.info("  Runtime:    containerd (systemd cgroup driver)")
        self.logger.info("Next steps:")
        self.logger.info(f"  1. Reload your shell or run: source {self.settings.toolchain.profile_path}")
        self.logger.info("  2. Initialize the control plane: init-k8s-cluster")
        self.logger.info("=" * 50)

__all__ = ['EnvironmentSetupWorkflow']
