#!/usr/bin/env python3
"""
Kubernetes Cluster Reset
Tears down the kubeadm control plane and returns the host to its
post-setup state
"""

import os
from typing import List, Optional

from ..core.workflow import BaseWorkflow, WorkflowStep, StepStatus
from ..utils.helpers import ConfirmationDeclined, check_command_exists

class ClusterResetWorkflow(BaseWorkflow):
    """Destructive cluster teardown, guarded by an explicit confirmation"""

    name = "reset"
    description = "Drain, kubeadm reset, remove cluster state, flush iptables, restart services"

    def pre_checks(self) -> None:
        self.checker.require_non_root()
        self.confirm()

    def confirm(self) -> None:
        """Warn, then require the exact answer 'yes'"""
        self.logger.warning("⚠️  WARNING: This will completely reset your Kubernetes cluster!")
        self.logger.warning("⚠️  All cluster data, configuration and workloads will be lost.")

        answer = self.options.confirm
        if answer is None:
            answer = self.prompt("Are you sure you want to continue? (yes/no): ")

        if answer != "yes":
            raise ConfirmationDeclined("Reset cancelled")

    def define_steps(self) -> List[WorkflowStep]:
        reset = self.settings.reset
        return [
            WorkflowStep(
                name="drain_node",
                description="Evict workloads from this node",
                function=self.drain_node,
                required=False,
                max_retries=reset.drain_retries,
                retry_delay=reset.drain_retry_delay
            ),
            WorkflowStep(
                name="reset_kubeadm",
                description="Run kubeadm reset",
                function=self.reset_kubeadm
            ),
            WorkflowStep(
                name="remove_cluster_state",
                description="Remove cluster configuration and data directories",
                function=self.remove_cluster_state
            ),
            WorkflowStep(
                name="flush_iptables",
                description="Flush iptables rules",
                function=self.flush_iptables
            ),
            WorkflowStep(
                name="restart_services",
                description="Restart kubelet and containerd",
                function=self.restart_services
            ),
        ]

    def node_name(self) -> Optional[str]:
        result = self.execute_command("kubectl get nodes -o name", timeout=30)
        if not result.success or not result.stdout.strip():
            return None
        return result.stdout.splitlines()[0].strip().replace("node/", "", 1)

    def drain_node(self) -> StepStatus:
        """Drain the node while the API server is still reachable"""
        if not check_command_exists("kubectl"):
            self.logger.info("  → kubectl not installed, nothing to drain")
            return StepStatus.SKIPPED

        if not self.execute_command("kubectl get nodes", timeout=30).success:
            self.logger.info("  → Cluster not reachable, skipping drain")
            return StepStatus.SKIPPED

        node = self.node_name()
        if not node:
            return StepStatus.SKIPPED

        timeout = self.settings.reset.drain_timeout
        self.logger.info(f"🚰 Draining node {node}...")
        self.run_checked(
            f"kubectl drain {node} --delete-emptydir-data --force --ignore-daemonsets --timeout={timeout}s",
            timeout=timeout + 30
        )
        return StepStatus.SUCCESS

    def reset_kubeadm(self) -> StepStatus:
        self.logger.info("🔄 Resetting kubeadm...")
        self.run_checked("kubeadm reset --force", sudo=True, timeout=300)
        return StepStatus.SUCCESS

    def remove_cluster_state(self) -> StepStatus:
        """Remove configuration directories and the join script"""
        self.logger.info("🧹 Cleaning up configuration files...")
        self.run_commands([
            {
                "description": f"Remove {directory}",
                "command": f"rm -rf {os.path.expanduser(directory)}",
                "sudo": True
            }
            for directory in self.settings.reset.state_directories
        ])

        # The init record describes the cluster just removed
        for leftover in (self.settings.storage.join_script_path, self.run_record("init")):
            if leftover.exists():
                leftover.unlink()
                self.logger.info(f"  → Removed {leftover}")
        return StepStatus.SUCCESS

    def flush_iptables(self) -> StepStatus:
        self.logger.info("🔥 Flushing iptables rules...")
        self.run_commands([
            {"description": "Flush filter table", "command": "iptables -F", "sudo": True},
            {"description": "Flush nat table", "command": "iptables -t nat -F", "sudo": True},
            {"description": "Flush mangle table", "command": "iptables -t mangle -F", "sudo": True},
            {"description": "Delete custom chains", "command": "iptables -X", "sudo": True},
        ])
        return StepStatus.SUCCESS

    def restart_services(self) -> StepStatus:
        self.logger.info("🔄 Restarting services...")
        self.run_commands([
            {"description": "Restart kubelet", "command": "systemctl restart kubelet", "sudo": True},
            {"description": "Restart containerd", "command": "systemctl restart containerd", "sudo": True},
        ])
        return StepStatus.SUCCESS

    def summary(self) -> None:
        self.logger.info("=" * 50)
        self.logger.info("Kubernetes cluster reset completed")
        self.logger.info("  Run init-k8s-cluster to initialize a new cluster")
        self.logger.info("=" * 50)

__all__ = ['ClusterResetWorkflow']
