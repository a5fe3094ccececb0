"""
Pytest configuration and fixtures for hosting panel tests.
"""
import os
import sys
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from hostpanel.app import create_app
from hostpanel.action_orchestrator import ActionOrchestrator
from hostpanel.action_runner import ActionRunner
from hostpanel.config import ComputeConfig, OrchestratorConfig
from hostpanel.dns_records import DNSRecordManager
from hostpanel.models import db, Server
from hostpanel.provisioner import ComputeProvisioner
from hostpanel.providers import ComputeServer, DNSRecord, ProviderError
from hostpanel.server_store import ServerStore
from shared.retry import RetryPolicy


def no_sleep(seconds):
    pass


# ==================== Provider fakes ====================

class FakeComputeClient:
    """
    In-memory compute provider.

    Power actions take effect after `polls_until_off` / `polls_until_running`
    status reads, so tests can control how long convergence takes.
    """

    def __init__(self):
        self.servers = {}
        self.calls = []
        self.failures = {}
        self.hooks = {}
        self.polls_until_off = 0
        self.polls_until_running = 0
        self._pending = {}
        self._next_id = 1000

    def add(self, compute_id, status='running', ipv4='203.0.113.10'):
        self.servers[compute_id] = {'status': status, 'ipv4': ipv4}

    def call_names(self):
        return [c[0] for c in self.calls]

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.hooks:
            self.hooks[name](*args)
        if name in self.failures:
            raise self.failures[name]

    def _schedule(self, compute_id, interim, target, polls):
        if polls > 0:
            self.servers[compute_id]['status'] = interim
            self._pending[compute_id] = [polls, target]
        else:
            self.servers[compute_id]['status'] = target

    def create(self, name, server_type, image, location, ssh_keys=None, user_data=''):
        self._call('create', name)
        self._next_id += 1
        compute_id = str(self._next_id)
        self.add(compute_id, status='initializing', ipv4='203.0.113.50')
        self._schedule(compute_id, 'initializing', 'running', self.polls_until_running)
        return self._snapshot(compute_id)

    def get(self, compute_id):
        self._call('get', compute_id)
        if compute_id not in self.servers:
            return None
        pending = self._pending.get(compute_id)
        if pending:
            pending[0] -= 1
            if pending[0] <= 0:
                self.servers[compute_id]['status'] = pending[1]
                del self._pending[compute_id]
        return self._snapshot(compute_id)

    def delete(self, compute_id):
        self._call('delete', compute_id)
        self._pending.pop(compute_id, None)
        return self.servers.pop(compute_id, None) is not None

    def power_on(self, compute_id):
        self._call('power_on', compute_id)
        if compute_id not in self.servers:
            return None
        self._schedule(compute_id, 'starting', 'running', self.polls_until_running)
        return {'id': 1, 'command': 'poweron'}

    def power_off(self, compute_id):
        self._call('power_off', compute_id)
        if compute_id not in self.servers:
            return None
        self._schedule(compute_id, 'stopping', 'off', self.polls_until_off)
        return {'id': 2, 'command': 'shutdown'}

    def reboot(self, compute_id):
        self._call('reboot', compute_id)
        if compute_id not in self.servers:
            return None
        self._schedule(compute_id, 'starting', 'running', self.polls_until_running)
        return {'id': 3, 'command': 'reboot'}

    def _snapshot(self, compute_id):
        data = self.servers[compute_id]
        return ComputeServer(compute_id, f'srv-{compute_id}', data['status'], data['ipv4'])


class FakeDNSClient:
    def __init__(self):
        self.records = {}
        self.calls = []
        self.failing_ids = set()
        self.fail_lookups = False
        self._next_id = 0

    def add(self, record_id, record_type, name, content=None):
        self.records[record_id] = DNSRecord(record_id, record_type, name, content)

    def list_by_type_and_name(self, record_type, name):
        self.calls.append(('list_by_type_and_name', record_type, name))
        if self.fail_lookups:
            raise ProviderError('dns', 'lookup failed', status_code=500)
        return [r for r in self.records.values() if r.record_type == record_type and r.name == name]

    def list_by_type_and_content(self, record_type, content):
        self.calls.append(('list_by_type_and_content', record_type, content))
        if self.fail_lookups:
            raise ProviderError('dns', 'lookup failed', status_code=500)
        return [r for r in self.records.values() if r.record_type == record_type and r.content == content]

    def delete_by_id(self, record_id):
        self.calls.append(('delete_by_id', record_id))
        if record_id in self.failing_ids:
            raise ProviderError('dns', f'delete {record_id} failed', status_code=500)
        return self.records.pop(record_id, None) is not None

    def create_record(self, record_type, name, content=None, data=None, ttl=1, proxied=False):
        self.calls.append(('create_record', record_type, name, content, ttl))
        self._next_id += 1
        record = DNSRecord(f'rec-new-{self._next_id}', record_type, name, content)
        self.records[record.record_id] = record
        return record


class FakeStorageClient:
    def __init__(self):
        self.objects = set()
        self.fail_list = False
        self.fail_delete = False
        self.delete_calls = 0

    def list_by_prefix(self, prefix):
        if self.fail_list:
            raise ProviderError('storage', 'list failed')
        return sorted(k for k in self.objects if k.startswith(prefix))

    def delete_batch(self, keys):
        self.delete_calls += 1
        if self.fail_delete:
            raise ProviderError('storage', 'delete failed')
        for key in keys:
            self.objects.discard(key)
        return len(keys)


# ==================== App fixtures ====================

@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing."""
    with app.app_context():
        # Clear all tables before each test
        db.session.remove()

        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture
def make_server(db_session):
    """Insert a server row directly."""
    def _make(server_id='s1', status='Stopped', compute_ref=None, network_address=None,
              name_ref=None, dns_record_ids=None, transition_started_at=None,
              auto_stop_timeout=0, last_empty_at=None):
        server = Server(
            server_id=server_id,
            name=f'Server {server_id}',
            name_ref=name_ref or server_id,
            status=status,
            compute_ref=compute_ref,
            network_address=network_address,
            dns_record_ids=dns_record_ids or [],
            transition_started_at=transition_started_at,
            auto_stop_timeout=auto_stop_timeout,
            last_empty_at=last_empty_at
        )
        db.session.add(server)
        db.session.commit()
        return server
    return _make


@pytest.fixture
def fake_compute():
    return FakeComputeClient()


@pytest.fixture
def fake_dns():
    return FakeDNSClient()


@pytest.fixture
def fake_storage():
    return FakeStorageClient()


@pytest.fixture
def dns_records(fake_dns):
    return DNSRecordManager(
        fake_dns,
        domain_suffix='.example.net',
        retry_policy=RetryPolicy(3, 0),
        sleep=no_sleep
    )


@pytest.fixture
def orchestrator_config():
    return OrchestratorConfig(
        provider_retry=RetryPolicy(3, 0),
        power_off_poll=RetryPolicy(5, 0),
        converge_poll=RetryPolicy(5, 0),
    )


@pytest.fixture
def orchestrator(app, db_session, fake_compute, dns_records, fake_storage, orchestrator_config):
    """Orchestrator wired to the fakes and installed on the app for route tests."""
    orchestrator = ActionOrchestrator(
        ServerStore(),
        fake_compute,
        dns_records,
        fake_storage,
        provisioner=ComputeProvisioner(
            fake_compute,
            dns_records,
            ComputeConfig(api_base='https://compute.invalid', token='test')
        ),
        cfg=orchestrator_config,
        sleep=no_sleep
    )

    previous = (app.orchestrator, app.action_runner)
    app.orchestrator = orchestrator
    app.action_runner = ActionRunner(orchestrator)
    yield orchestrator
    app.orchestrator, app.action_runner = previous
