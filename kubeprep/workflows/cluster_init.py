#!/usr/bin/env python3
"""
Kubernetes Cluster Initialization
Bootstraps a kubeadm control plane on this host, installs the pod network
and emits the worker join script
"""

import math
import os
import re
import time
from pathlib import Path
from typing import List

from ..core.workflow import BaseWorkflow, WorkflowStep, StepStatus
from ..utils.helpers import WorkflowError, validate_ip_address, write_file

ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"
CONTROL_PLANE_TAINT = "node-role.kubernetes.io/control-plane-"
ROUTE_SOURCE = re.compile(r'\bsrc\s+(\S+)')

class ClusterInitWorkflow(BaseWorkflow):
    """Single control-plane cluster bootstrap"""

    name = "init"
    description = "Initialize a control plane with kubeadm, install Flannel and write the join script"

    def __init__(self, options=None):
        super().__init__(options)
        self.kubeconfig_path = Path.home() / ".kube" / "config"
        self.advertise_address = None
        self.join_command = None

    def pre_checks(self) -> None:
        self.logger.info("🔍 Checking prerequisites...")
        self.checker.require_non_root()
        self.checker.require_command("kubeadm", "Please run setup-k8s-env first")
        self.checker.ensure_service_started("kubelet")
        self.checker.require_service_active("containerd", "Please run setup-k8s-env first")
        self.logger.info("✅ Prerequisites check passed")

    def define_steps(self) -> List[WorkflowStep]:
        return [
            WorkflowStep(
                name="pull_images",
                description="Pre-pull control plane images",
                function=self.pull_images
            ),
            WorkflowStep(
                name="init_cluster",
                description="Run kubeadm init",
                function=self.init_cluster
            ),
            WorkflowStep(
                name="setup_kubeconfig",
                description="Install admin kubeconfig for the current user",
                function=self.setup_kubeconfig
            ),
            WorkflowStep(
                name="install_cni",
                description=f"Install {self.settings.cni.name} pod network",
                function=self.install_cni
            ),
            WorkflowStep(
                name="setup_single_node",
                description="Allow workloads on the control plane",
                function=self.setup_single_node
            ),
            WorkflowStep(
                name="verify_cluster",
                description="Wait for nodes to become Ready",
                function=self.verify_cluster
            ),
            WorkflowStep(
                name="generate_join_command",
                description="Write the worker join script",
                function=self.generate_join_command
            ),
        ]

    def pull_images(self) -> StepStatus:
        """Pull required images"""
        k8s = self.settings.k8s
        self.logger.info("📥 Pulling Kubernetes images...")
        self.run_checked(
            f"kubeadm config images pull --kubernetes-version={k8s.version}",
            sudo=True,
            timeout=k8s.image_pull_timeout
        )
        return StepStatus.SUCCESS

    def detect_advertise_address(self) -> str:
        """Configured address, else the source address of the default route"""
        k8s = self.settings.k8s
        if k8s.advertise_address:
            if not validate_ip_address(k8s.advertise_address):
                raise WorkflowError(f"Invalid advertise address: {k8s.advertise_address}")
            return k8s.advertise_address

        # Route lookup only, nothing is sent to the probe address
        result = self.run_checked(f"ip route get {k8s.advertise_probe_address}", timeout=10)
        match = ROUTE_SOURCE.search(result.stdout)
        if not match or not validate_ip_address(match.group(1)):
            raise WorkflowError(
                "Could not detect the API server advertise address; set ADVERTISE_ADDRESS"
            )
        return match.group(1)

    def init_cluster(self) -> StepStatus:
        """Initialize the cluster"""
        k8s = self.settings.k8s
        self.advertise_address = self.detect_advertise_address()
        self.logger.info(f"🚀 Initializing cluster (API server on {self.advertise_address})...")

        self.run_checked(
            f"kubeadm init "
            f"--kubernetes-version={k8s.version} "
            f"--pod-network-cidr={k8s.pod_cidr} "
            f"--service-cidr={k8s.service_cidr} "
            f"--apiserver-advertise-address={self.advertise_address} "
            f"--v=5",
            sudo=True,
            timeout=k8s.init_timeout
        )
        self.logger.info("✅ Cluster initialized")
        return StepStatus.SUCCESS

    def setup_kubeconfig(self) -> StepStatus:
        """Setup kubectl for the current user"""
        self.logger.info("⚙️  Setting up kubectl configuration...")
        config = self.kubeconfig_path
        self.run_commands([
            {
                "description": "Create .kube directory",
                "command": f"mkdir -p {config.parent}"
            },
            {
                "description": "Copy admin config",
                "command": f"cp -f {ADMIN_KUBECONFIG} {config}",
                "sudo": True
            },
            {
                "description": "Set config ownership",
                "command": f"chown {os.getuid()}:{os.getgid()} {config}",
                "sudo": True
            },
        ])
        return StepStatus.SUCCESS

    def install_cni(self) -> StepStatus:
        """Install the pod network manifest"""
        cni = self.settings.cni
        if cni.floating:
            self.logger.warning(
                f"⚠️  Using the floating 'latest' {cni.name} manifest; results may differ between runs"
            )
        self.logger.info(f"🌐 Installing {cni.name} {cni.version}...")
        self.run_checked(f"kubectl apply -f {cni.manifest_url}", timeout=180)
        return StepStatus.SUCCESS

    def wants_single_node(self) -> bool:
        choice = self.options.single_node
        if choice is None and self.options.interactive:
            answer = self.prompt("Setup as single-node cluster? (y/N): ")
            choice = bool(answer) and answer[0] in "yY"
        return bool(choice)

    def setup_single_node(self) -> StepStatus:
        """Remove the control-plane taint when running a single node"""
        if not self.wants_single_node():
            self.logger.info("  → Keeping control-plane taint (multi-node cluster)")
            return StepStatus.SKIPPED

        self.logger.info("🏷️  Removing control-plane taint...")
        self.run_checked(f"kubectl taint nodes --all {CONTROL_PLANE_TAINT}", timeout=60)
        return StepStatus.SUCCESS

    def api_server_ready(self) -> bool:
        return self.execute_command("kubectl get --raw=/readyz", timeout=30).success

    def verify_cluster(self) -> StepStatus:
        """Wait for the node and report cluster state"""
        timeout = self.settings.k8s.readiness_timeout
        started = time.monotonic()
        if not self.wait_for_condition(self.api_server_ready, "API server to respond", timeout=timeout):
            raise WorkflowError("API server did not become ready")

        # Both waits share one readiness budget
        remaining = max(math.ceil(timeout - (time.monotonic() - started)), 1)
        self.logger.info("⏳ Waiting for nodes to be Ready...")
        self.run_checked(
            f"kubectl wait --for=condition=Ready nodes --all --timeout={remaining}s",
            timeout=remaining + 30
        )

        for command in ("kubectl get nodes -o wide", "kubectl get pods --all-namespaces"):
            result = self.execute_command(command, timeout=30)
            if result.success:
                self.logger.info(f"$ {command}\n{result.stdout}")
        return StepStatus.SUCCESS

    def generate_join_command(self) -> StepStatus:
        """Write the worker join script"""
        self.logger.info("🔑 Generating worker join command...")
        result = self.run_checked("kubeadm token create --print-join-command", sudo=True, timeout=60)

        join_command = result.stdout.strip()
        if not join_command.startswith("kubeadm join"):
            raise WorkflowError(f"Unexpected join command output: {join_command!r}")

        script = self.settings.storage.join_script_path
        write_file(script, f"sudo {join_command}\n", mode=0o755)
        self.join_command = join_command

        self.logger.info(f"  → Join command saved to {script}")
        self.logger.info(f"  → sudo {join_command}")
        return StepStatus.SUCCESS

    def get_cluster_info(self):
        return {
            'kubernetes_version': self.settings.k8s.version,
            'advertise_address': self.advertise_address or self.settings.k8s.advertise_address or "unknown",
            'pod_cidr': self.settings.k8s.pod_cidr,
            'service_cidr': self.settings.k8s.service_cidr,
            'cni': f"{self.settings.cni.name} {self.settings.cni.version}",
            'kubeconfig': str(self.kubeconfig_path),
            'join_script': str(self.settings.storage.join_script_path),
        }

    def summary(self) -> None:
        info = self.get_cluster_info()
        self.logger.info("=" * 50)
        self.logger.info("Kubernetes cluster initialized")
        self.logger.info(f"  Version:      {info['kubernetes_version']}")
        self.logger.info(f"  API server:   {info['advertise_address']}:6443")
        self.logger.info(f"  Pod CIDR:     {info['pod_cidr']}")
        self.logger.info(f"  Service CIDR: {info['service_cidr']}")
        self.logger.info(f"  CNI:          {info['cni']}")
        self.logger.info(f"  Kubeconfig:   {info['kubeconfig']}")
        self.logger.info(f"  Join script:  {info['join_script']}")
        self.logger.info("Next steps:")
        self.logger.info("  1. kubectl get nodes")
        self.logger.info("  2. Copy the join script to each worker and run it there")
        self.logger.info("=" * 50)

__all__ = ['ClusterInitWorkflow']
