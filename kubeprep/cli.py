#!/usr/bin/env python3
"""
Command line entry points for kubeprep

    kubeprep [--debug] [--config FILE] {setup,init,reset,serve}
    setup-k8s-env / init-k8s-cluster / reset-k8s-cluster
"""

import argparse
import sys
from typing import List, Optional

from kubeprep.config.settings import settings
from kubeprep.core.workflow import WorkflowOptions, create_workflow
from kubeprep.utils.helpers import KubeprepError, ConfigurationError
from kubeprep.utils.logger import get_logger, log_manager

logger = get_logger(__name__)

INTERRUPTED = 130

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='kubeprep',
        description='Prepare a Debian/Ubuntu host for Kubernetes and manage a kubeadm control plane'
    )
    parser.add_argument('--debug', action='store_true', help='Verbose console output')
    parser.add_argument('--config', metavar='FILE', help='YAML file overriding settings')

    subparsers = parser.add_subparsers(dest='command', required=True)

    setup_parser = subparsers.add_parser('setup', help='Prepare this host (packages, runtime, kubeadm)')
    setup_parser.add_argument(
        '--resume', action='store_true',
        help='Skip steps that completed in the last setup run'
    )

    init_parser = subparsers.add_parser('init', help='Initialize a control plane on this host')
    init_parser.add_argument(
        '--resume', action='store_true',
        help='Skip steps that completed in the last init run'
    )
    single_node = init_parser.add_mutually_exclusive_group()
    single_node.add_argument(
        '--single-node', dest='single_node', action='store_true', default=None,
        help='Allow workloads on the control plane without asking'
    )
    single_node.add_argument(
        '--no-single-node', dest='single_node', action='store_false',
        help='Keep the control-plane taint without asking'
    )

    reset_parser = subparsers.add_parser('reset', help='Tear down the cluster on this host')
    reset_parser.add_argument(
        '--yes', action='store_true',
        help='Answer the confirmation prompt with "yes"'
    )

    serve_parser = subparsers.add_parser('serve', help='Run the REST API server')
    serve_parser.add_argument(
        '--host', default=None,
        help=f'Host to bind to (default: {settings.flask.host})'
    )
    serve_parser.add_argument(
        '--port', type=int, default=None,
        help=f'Port to bind to (default: {settings.flask.port})'
    )

    return parser

def configure(debug: bool = False, config_file: Optional[str] = None):
    """Apply logging and settings overrides before any workflow is created"""
    log_manager.setup_root_logger(debug=debug)

    if config_file:
        settings.load_file(config_file)

    errors = settings.validate()
    if errors:
        raise ConfigurationError("; ".join(errors))

def run_workflow(name: str, options: WorkflowOptions) -> int:
    """Run one workflow and map its outcome to a process exit status"""
    workflow = create_workflow(name, options)
    try:
        workflow.run()
    except KeyboardInterrupt:
        logger.warning("❌ Interrupted by user")
        return INTERRUPTED

    progress = workflow.progress
    if progress.exit_code:
        logger.error(f"❌ {name} failed: {progress.error_message}")
    return progress.exit_code

def main(argv: Optional[List[str]] = None) -> int:
    """Entry point"""
    args = build_parser().parse_args(argv)

    try:
        configure(args.debug, args.config)

        if args.command == 'serve':
            from kubeprep.main import serve
            serve(args.host, args.port)
            return 0

        options = WorkflowOptions(
            resume=getattr(args, 'resume', False),
            single_node=getattr(args, 'single_node', None),
            confirm="yes" if getattr(args, 'yes', False) else None,
            interactive=sys.stdin.isatty()
        )
        return run_workflow(args.command, options)

    except KeyboardInterrupt:
        logger.warning("❌ Interrupted by user")
        return INTERRUPTED
    except KubeprepError as e:
        logger.error(f"❌ {e}")
        return 1
    finally:
        log_manager.shutdown()

def setup_main() -> int:
    """setup-k8s-env"""
    return main(['setup'])

def init_main() -> int:
    """init-k8s-cluster"""
    return main(['init'])

def reset_main() -> int:
    """reset-k8s-cluster"""
    return main(['reset'])

if __name__ == "__main__":
    sys.exit(main())
