#!/usr/bin/env python3
"""
Workflow API Routes for kubeprep
Provides REST endpoints to start, inspect and cancel workflow runs
"""

import threading
import time
from flask import Blueprint, request, jsonify
from typing import Dict, Any, Optional, Tuple

from kubeprep.core.workflow import (
    WORKFLOW_NAMES, WorkflowOptions, create_workflow, workflow_class
)
from kubeprep.config.settings import settings
from kubeprep.utils.logger import get_logger

# Create blueprint
workflows_bp = Blueprint('workflows', __name__, url_prefix='/api/v1/workflows')
logger = get_logger(__name__)

# Global storage for workflow runs
runs: Dict[str, Dict[str, Any]] = {}
runs_lock = threading.Lock()

def active_run() -> Optional[str]:
    """Id of a run that has not completed yet, if any"""
    for run_id, run in runs.items():
        if not run['completed']:
            return run_id
    return None

def validate_request_data(data: Dict[str, Any], name: str) -> Tuple[bool, str]:
    """Validate request data"""
    errors = []

    for field in ('single_node', 'resume'):
        if field in data and not isinstance(data[field], bool):
            errors.append(f"Field '{field}' must be a boolean")

    if 'confirm' in data and not isinstance(data['confirm'], str):
        errors.append("Field 'confirm' must be a string")

    if name == 'reset' and data.get('confirm') != 'yes':
        errors.append("Reset requires confirm: \"yes\"")

    return len(errors) == 0, "; ".join(errors)

def run_workflow(run_id: str):
    """Run a workflow in a background thread"""
    workflow = runs[run_id]['workflow']
    try:
        success = workflow.run()
        runs[run_id]['success'] = success

        if success:
            logger.info(f"Workflow run {run_id} completed successfully")
        else:
            logger.error(f"Workflow run {run_id} failed")

    except Exception as e:
        logger.error(f"Workflow run {run_id} failed with exception: {e}")
        runs[run_id]['success'] = False
        runs[run_id]['error'] = str(e)

    finally:
        runs[run_id]['completed'] = True

@workflows_bp.route('', methods=['GET'])
def list_workflows():
    """List available workflows"""
    workflows = {
        name: {'description': workflow_class(name).description}
        for name in WORKFLOW_NAMES
    }
    workflows['init']['options'] = ['single_node', 'resume']
    workflows['setup']['options'] = ['resume']
    workflows['reset']['options'] = ['confirm']

    return jsonify({
        'success': True,
        'workflows': workflows,
        'defaults': {
            'k8s_version': settings.k8s.version,
            'pod_cidr': settings.k8s.pod_cidr,
            'service_cidr': settings.k8s.service_cidr,
            'cni': f"{settings.cni.name} {settings.cni.version}",
            'go_version': settings.toolchain.go_version,
        }
    })

@workflows_bp.route('/<name>/start', methods=['POST'])
def start_workflow(name: str):
    """Start a workflow run"""
    if name not in WORKFLOW_NAMES:
        return jsonify({
            'success': False,
            'error': f'Invalid workflow: {name}'
        }), 400

    data = request.get_json(silent=True) or {}

    valid, error_message = validate_request_data(data, name)
    if not valid:
        return jsonify({
            'success': False,
            'error': f'Validation failed: {error_message}'
        }), 400

    # One workflow at a time per host
    with runs_lock:
        active = active_run()
        if active:
            return jsonify({
                'success': False,
                'error': f'Workflow run {active} ({runs[active]["name"]}) is still in progress',
                'active_run_id': active
            }), 409

        options = WorkflowOptions(
            resume=data.get('resume', False),
            single_node=data.get('single_node'),
            confirm=data.get('confirm'),
            interactive=False
        )
        workflow = create_workflow(name, options)

        runs[options.run_id] = {
            'workflow': workflow,
            'name': name,
            'started_at': time.time(),
            'completed': False,
            'success': False,
            'error': None
        }

    thread = threading.Thread(
        target=run_workflow,
        args=(options.run_id,),
        name=f"workflow-{name}-{options.run_id}"
    )
    thread.daemon = True
    thread.start()

    logger.info(f"Started {name} workflow: {options.run_id}")

    return jsonify({
        'success': True,
        'run_id': options.run_id,
        'workflow': name,
        'message': 'Workflow started'
    }), 202

@workflows_bp.route('/runs/<run_id>/status', methods=['GET'])
def get_run_status(run_id: str):
    """Get run status and progress"""
    if run_id not in runs:
        return jsonify({
            'success': False,
            'error': 'Run not found'
        }), 404

    run = runs[run_id]
    workflow = run['workflow']

    response = {
        'success': True,
        'run_id': run_id,
        'workflow': run['name'],
        'progress': workflow.get_progress(),
        'started_at': run['started_at'],
        'completed': run['completed']
    }

    if run['completed']:
        response['success_status'] = run['success']
        if run.get('error'):
            response['error'] = run['error']

        if run['success'] and hasattr(workflow, 'get_cluster_info'):
            response['cluster_info'] = workflow.get_cluster_info()

    return jsonify(response)

@workflows_bp.route('/runs/<run_id>/cancel', methods=['POST'])
def cancel_run(run_id: str):
    """Cancel a running workflow"""
    if run_id not in runs:
        return jsonify({
            'success': False,
            'error': 'Run not found'
        }), 404

    run = runs[run_id]
    if run['completed']:
        return jsonify({
            'success': False,
            'error': 'Run already completed'
        }), 400

    run['workflow'].cancel()
    logger.info(f"Workflow run {run_id} cancellation requested")

    return jsonify({
        'success': True,
        'message': f'Cancellation of run {run_id} requested; the current step will finish first'
    }), 200

__all__ = ['workflows_bp', 'runs']
