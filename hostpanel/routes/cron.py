import hmac
import logging
from flask import Blueprint, request, jsonify, current_app

bp = Blueprint('cron', __name__, url_prefix='/api/v1/cron')

logger = logging.getLogger(__name__)


def _presented_secret() -> str:
    header = request.headers.get('X-Cron-Secret')
    if header:
        return header
    auth = request.headers.get('Authorization', '')
    if auth.startswith('Bearer '):
        return auth[len('Bearer '):]
    return ''


def _authorized() -> bool:
    secret = current_app.config.get('CRON_SECRET')
    if not secret:
        # No secret configured means the endpoint is closed
        return False
    return hmac.compare_digest(_presented_secret(), secret)


@bp.route('/kill-stuck', methods=['POST'])
def kill_stuck():
    """Kill servers stuck in a transitional status past the limit."""
    if not _authorized():
        return jsonify({'error': 'unauthorized', 'detail': 'Invalid cron secret'}), 401

    killed = current_app.orchestrator.kill_stuck_servers()
    if killed:
        logger.warning(f"Stuck sweep killed {len(killed)} server(s): {', '.join(killed)}")

    return jsonify({
        'ok': True,
        'killed': killed,
        'count': len(killed)
    })


@bp.route('/auto-stop', methods=['POST'])
def auto_stop():
    """Stop running servers that have been empty longer than their auto-stop timeout."""
    if not _authorized():
        return jsonify({'error': 'unauthorized', 'detail': 'Invalid cron secret'}), 401

    stopped = current_app.orchestrator.auto_stop_idle_servers()
    if stopped:
        logger.info(f"Auto-stop stopped {len(stopped)} idle server(s): {', '.join(stopped)}")

    return jsonify({
        'ok': True,
        'stopped': stopped,
        'count': len(stopped)
    })
