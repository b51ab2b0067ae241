"""
Admin routes for the recurring execution scheduler: manual trigger and audit views
"""
from flask import Blueprint, current_app, request, jsonify

from routes.admin.auth import admin_required, get_current_admin
from services import audit, policy
from services.triggers import ManualTrigger

admin_cron_bp = Blueprint('admin_cron', __name__, url_prefix='/admin/cron')


@admin_cron_bp.route('/trigger', methods=['POST'])
@admin_required
def trigger():
    """Run the recurring job now - superadmin only"""
    policy.require(get_current_admin(), 'cron.trigger')

    result = ManualTrigger(current_app._get_current_object()).fire()
    body = result.to_dict()
    body['success'] = result.success
    return jsonify(body), (200 if result.success else 409)


@admin_cron_bp.route('/runs')
@admin_required
def runs():
    policy.require(get_current_admin(), 'cron.view')
    limit = min(max(request.args.get('limit', 10, type=int), 1), 100)
    entries = audit.recent_runs(limit=limit, job_name=request.args.get('job') or None)
    return jsonify({'success': True, 'runs': [entry.to_dict() for entry in entries]})


@admin_cron_bp.route('/stats')
@admin_required
def stats():
    """Per-job run statistics over the configured window"""
    policy.require(get_current_admin(), 'cron.view')
    window = request.args.get('days', current_app.config['CRON_STATS_WINDOW_DAYS'], type=int)
    return jsonify({'success': True, 'stats': audit.stats_by_job(window_days=window)})


@admin_cron_bp.route('/jobs')
@admin_required
def jobs():
    policy.require(get_current_admin(), 'cron.view')
    tz = current_app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    return jsonify({'success': True, 'jobs': audit.status_of_scheduled_jobs(tz=tz)})
