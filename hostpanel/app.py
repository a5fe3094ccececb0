import os
import logging
from flask import Flask, request, jsonify

from shared.events import server_registered_event
from shared.pubsub import PubSubClient
from shared.state_machine import ServerStateMachine
from .config import config, ComputeConfig, DNSConfig, StorageConfig, OrchestratorConfig
from .models import db
from .errors import ActionError
from .server_store import ServerStore
from .providers import HetznerComputeClient, CloudflareDNSClient, S3StorageClient
from .dns_records import DNSRecordManager
from .provisioner import ComputeProvisioner
from .action_orchestrator import ActionOrchestrator
from .action_runner import ActionRunner
from .name_generator import sanitize_subdomain, generate_subdomain

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """Application factory for the hosting panel service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # Initialize extensions
    db.init_app(app)

    # Create tables
    with app.app_context():
        db.create_all()

    # Initialize services
    build_services(app)

    # Register routes
    register_api_routes(app)

    from .routes import cron
    app.register_blueprint(cron.bp)

    return app


def build_services(app: Flask):
    """Wire provider clients and the orchestrator from explicit config values."""
    cfg = app.config

    compute_cfg = ComputeConfig.from_mapping(cfg)
    dns_cfg = DNSConfig.from_mapping(cfg)
    orchestrator_cfg = OrchestratorConfig.from_mapping(cfg)

    compute = HetznerComputeClient.from_config(compute_cfg)
    dns = CloudflareDNSClient.from_config(dns_cfg)
    storage = S3StorageClient(StorageConfig.from_mapping(cfg))

    dns_records = DNSRecordManager(
        dns,
        domain_suffix=dns_cfg.domain_suffix,
        service_label=dns_cfg.service_label,
        game_port=dns_cfg.game_port,
        sleeper_ip=dns_cfg.sleeper_ip,
        retry_policy=orchestrator_cfg.provider_retry,
    )

    events = None
    if cfg.get('REDIS_URL'):
        events = PubSubClient(cfg['REDIS_URL'])
    else:
        logger.info("REDIS_URL not set, lifecycle events disabled")

    store = ServerStore()
    orchestrator = ActionOrchestrator(
        store,
        compute,
        dns_records,
        storage,
        provisioner=ComputeProvisioner(compute, dns_records, compute_cfg),
        events=events,
        cfg=orchestrator_cfg,
    )

    # Store services on app for access in routes
    app.store = store
    app.events = events
    app.orchestrator = orchestrator
    app.action_runner = ActionRunner(orchestrator)


def parse_auto_stop_timeout(value):
    """Minutes as a non-negative int, or None when the value is unusable."""
    if isinstance(value, bool):
        return None
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return None
    return minutes if minutes >= 0 else None


def register_api_routes(app: Flask):
    """Register API routes."""

    @app.errorhandler(ActionError)
    def handle_action_error(e: ActionError):
        return jsonify(e.to_dict()), e.http_status

    # ==================== Actions ====================

    @app.route('/api/v1/servers/action', methods=['POST'])
    def api_server_action():
        """Start, stop, restart, kill or delete a server."""
        data = request.get_json(silent=True) or {}
        server_id = data.get('instanceId') or data.get('serverId')
        action = data.get('action')

        if not server_id or not action:
            return jsonify({
                'error': 'missing_fields',
                'detail': 'instanceId and action are required'
            }), 400

        if app.config['RUN_ACTIONS_IN_BACKGROUND']:
            ticket = app.action_runner.submit(server_id, action)
            return jsonify({
                'ok': True,
                'server_id': ticket.server_id,
                'action': ticket.action.value,
                'status': ticket.claimed_status.value
            }), 202

        result = app.orchestrator.perform_action(server_id, action)
        return jsonify(result.to_dict())

    # ==================== Server records ====================

    @app.route('/api/v1/servers', methods=['GET'])
    def api_list_servers():
        """List servers with optional status filtering."""
        status = request.args.get('status')
        limit = request.args.get('limit', 50, type=int)
        offset = request.args.get('offset', 0, type=int)

        servers = app.store.list(status=status, limit=limit, offset=offset)

        return jsonify({
            'servers': [s.to_dict() for s in servers],
            'count': len(servers),
            'limit': limit,
            'offset': offset
        })

    @app.route('/api/v1/servers', methods=['POST'])
    def api_register_server():
        """Register a server record. Compute is provisioned on first start."""
        data = request.get_json(silent=True) or {}
        name = (data.get('name') or '').strip()
        if not name:
            return jsonify({'error': 'missing_fields', 'detail': 'Server name is required'}), 400

        requested = data.get('subdomain')
        subdomain = sanitize_subdomain(requested) if requested else generate_subdomain()
        if not subdomain:
            return jsonify({'error': 'invalid_subdomain', 'detail': 'Subdomain has no usable characters'}), 400
        if app.store.name_ref_taken(subdomain):
            return jsonify({'error': 'subdomain_taken', 'detail': f"Subdomain '{subdomain}' is already in use"}), 409

        auto_stop_timeout = parse_auto_stop_timeout(data.get('auto_stop_timeout', 0))
        if auto_stop_timeout is None:
            return jsonify({'error': 'invalid_auto_stop_timeout', 'detail': 'auto_stop_timeout must be a non-negative number of minutes'}), 400

        server = app.store.create(name=name, name_ref=subdomain, auto_stop_timeout=auto_stop_timeout)
        logger.info(f"Registered server {server.server_id} as {subdomain}")
        if app.events:
            app.events.publish_server_event(
                server.server_id,
                server_registered_event(server.server_id, name, subdomain)
            )

        return jsonify({
            'message': 'Server registered',
            'server': server.to_dict()
        }), 201

    @app.route('/api/v1/servers/<server_id>', methods=['GET'])
    def api_get_server(server_id: str):
        """Get server details and the actions its status allows."""
        server = app.store.get_model(server_id)
        if not server:
            return jsonify({'error': 'not_found', 'detail': 'Server not found'}), 404

        data = server.to_dict()
        sm = ServerStateMachine.from_state_string(server.status)
        data['allowed_actions'] = list(sm.allowed_actions)
        return jsonify(data)

    @app.route('/api/v1/servers/<server_id>', methods=['PATCH'])
    def api_update_server(server_id: str):
        """Rename a server or change its auto-stop timeout."""
        data = request.get_json(silent=True) or {}
        fields = {}

        if 'name' in data:
            name = (data.get('name') or '').strip()
            if not name:
                return jsonify({'error': 'missing_fields', 'detail': 'Server name cannot be empty'}), 400
            fields['name'] = name

        if 'auto_stop_timeout' in data:
            auto_stop_timeout = parse_auto_stop_timeout(data['auto_stop_timeout'])
            if auto_stop_timeout is None:
                return jsonify({'error': 'invalid_auto_stop_timeout', 'detail': 'auto_stop_timeout must be a non-negative number of minutes'}), 400
            fields['auto_stop_timeout'] = auto_stop_timeout

        if not fields:
            return jsonify({'error': 'missing_fields', 'detail': 'Nothing to update'}), 400

        if not app.store.update(server_id, **fields):
            return jsonify({'error': 'not_found', 'detail': 'Server not found'}), 404

        return jsonify(app.store.get_model(server_id).to_dict())

    @app.route('/api/v1/servers/<server_id>/players', methods=['POST'])
    def api_report_players(server_id: str):
        """Player count reported by the agent on the game server; drives auto-stop."""
        data = request.get_json(silent=True) or {}
        player_count = data.get('player_count')
        if isinstance(player_count, bool) or not isinstance(player_count, int) or player_count < 0:
            return jsonify({'error': 'missing_fields', 'detail': 'player_count must be a non-negative integer'}), 400

        if not app.store.record_players(server_id, player_count):
            return jsonify({'error': 'not_found', 'detail': 'Server not found'}), 404

        server = app.store.get(server_id)
        return jsonify({
            'ok': True,
            'server_id': server_id,
            'player_count': player_count,
            'last_empty_at': server.last_empty_at.isoformat() if server.last_empty_at else None
        })

    @app.route('/api/v1/servers/<server_id>/status', methods=['GET'])
    def api_server_status(server_id: str):
        """Current status; with ?wait=1 resolve Starting/Restarting first."""
        if request.args.get('wait', '0').lower() in ('1', 'true', 'yes'):
            max_attempts = request.args.get('attempts', type=int)
            server = app.orchestrator.reconcile_status(server_id, max_attempts=max_attempts)
        else:
            server = app.store.get(server_id)
            if not server:
                return jsonify({'error': 'not_found', 'detail': 'Server not found'}), 404

        return jsonify({
            'server_id': server.server_id,
            'status': server.status,
            'network_address': server.network_address,
            'last_error': server.last_error
        })

    @app.route('/api/v1/servers/<server_id>/events', methods=['GET'])
    def api_server_events(server_id: str):
        """Recent lifecycle events for a server."""
        count = request.args.get('count', 50, type=int)
        events = app.events.get_recent_events(server_id, count) if app.events else []
        return jsonify({
            'server_id': server_id,
            'events': [e.to_dict() for e in events],
            'count': len(events)
        })

    # ==================== Health Check ====================

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        if app.events is None:
            redis_state = 'disabled'
        else:
            try:
                app.events.ping()
                redis_state = 'connected'
            except Exception:
                redis_state = 'disconnected'

        try:
            db.session.execute(db.text('SELECT 1'))
            db_ok = True
        except Exception:
            db_ok = False

        healthy = db_ok and redis_state != 'disconnected'
        return jsonify({
            'status': 'healthy' if healthy else 'unhealthy',
            'redis': redis_state,
            'database': 'connected' if db_ok else 'disconnected'
        }), 200 if healthy else 503
