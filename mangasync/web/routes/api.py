"""
API routes for the mangasync service host.
"""

from flask import Blueprint, current_app, jsonify, request

from mangasync.db.runs import RunRecorder
from mangasync.sync.engine import create_orchestrator_from_config
from mangasync.sync.models import RunStatus

api_bp = Blueprint('api', __name__, url_prefix='/api')


def _services():
    return current_app.extensions['mangasync']


@api_bp.route('/status')
def status():
    """Get current sync status."""
    services = _services()
    config_manager = services['config_manager']
    latest_run = RunRecorder(services['database']).latest()

    return jsonify({
        'configured': config_manager.is_configured(),
        'authenticated': config_manager.get_auth_context().is_valid(),
        'last_sync': latest_run['started_at'] if latest_run else None,
        'last_sync_status': latest_run['status'] if latest_run else None,
        'last_run': latest_run,
    })


@api_bp.route('/sync', methods=['POST'])
def trigger_sync():
    """Manually trigger a sync."""
    services = _services()
    database = services['database']
    config_manager = services['config_manager']

    try:
        orchestrator = create_orchestrator_from_config(config_manager, database)

        if not orchestrator:
            return jsonify({
                'success': False,
                'error': 'Sync engine not configured'
            }), 400

        try:
            report = orchestrator.run()
        finally:
            orchestrator.close()

        RunRecorder(database).record(report, user_id=orchestrator.auth.user_id)

        body = report.to_dict()
        body['success'] = report.status == RunStatus.COMPLETED
        return jsonify(body)

    except Exception as e:
        current_app.logger.exception("Manual sync failed")
        return jsonify({
            'success': False,
            'error': str(e)
        }), 500


@api_bp.route('/runs')
def get_runs():
    """Get sync runs."""
    limit = request.args.get('limit', 20, type=int)
    return jsonify(RunRecorder(_services()['database']).recent(limit))
