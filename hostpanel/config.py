import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from sqlalchemy.pool import StaticPool

from shared.retry import RetryPolicy


def _float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _int(name: str, default: str) -> int:
    return int(os.getenv(name, default))


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-prod')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Database
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///hostpanel.db')
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Redis (empty disables lifecycle events)
    REDIS_URL = os.getenv('REDIS_URL', '')

    # Compute provider
    HETZNER_API_BASE = os.getenv('HETZNER_API_BASE', 'https://api.hetzner.cloud/v1')
    HETZNER_API_TOKEN = os.getenv('HETZNER_API_TOKEN', '')
    HETZNER_SERVER_TYPE = os.getenv('HETZNER_SERVER_TYPE', 'cx22')
    HETZNER_IMAGE = os.getenv('HETZNER_IMAGE', 'ubuntu-22.04')
    HETZNER_LOCATION = os.getenv('HETZNER_LOCATION', 'nbg1')
    HETZNER_SSH_KEYS = os.getenv('HETZNER_SSH_KEYS', '')
    SERVER_USER_DATA = os.getenv('SERVER_USER_DATA', '')

    # DNS provider
    CLOUDFLARE_API_BASE = os.getenv('CLOUDFLARE_API_BASE', 'https://api.cloudflare.com/client/v4')
    CLOUDFLARE_API_TOKEN = os.getenv('CLOUDFLARE_API_TOKEN', '')
    CLOUDFLARE_ZONE_ID = os.getenv('CLOUDFLARE_ZONE_ID', '')
    DOMAIN_SUFFIX = os.getenv('DOMAIN_SUFFIX', '.example.net')
    DNS_SERVICE_LABEL = os.getenv('DNS_SERVICE_LABEL', '_minecraft')
    GAME_PORT = _int('GAME_PORT', '25565')
    SLEEPER_PROXY_IP = os.getenv('SLEEPER_PROXY_IP', '')

    # Object storage
    S3_ENDPOINT = os.getenv('S3_ENDPOINT', '')
    S3_BUCKET = os.getenv('S3_BUCKET', '')
    S3_REGION = os.getenv('S3_REGION', 'us-east-1')
    AWS_ACCESS_KEY_ID = os.getenv('AWS_ACCESS_KEY_ID', '')
    AWS_SECRET_ACCESS_KEY = os.getenv('AWS_SECRET_ACCESS_KEY', '')
    STORAGE_PREFIX = os.getenv('STORAGE_PREFIX', 'servers/')

    # Timeouts, retries and polling bounds (seconds)
    PROVIDER_READ_TIMEOUT = _float('PROVIDER_READ_TIMEOUT', '5')
    PROVIDER_ACTION_TIMEOUT = _float('PROVIDER_ACTION_TIMEOUT', '30')
    PROVIDER_RETRY_ATTEMPTS = _int('PROVIDER_RETRY_ATTEMPTS', '3')
    PROVIDER_RETRY_DELAY = _float('PROVIDER_RETRY_DELAY', '2')
    POWER_OFF_POLL_ATTEMPTS = _int('POWER_OFF_POLL_ATTEMPTS', '30')
    POWER_OFF_POLL_INTERVAL = _float('POWER_OFF_POLL_INTERVAL', '5')
    CONVERGE_POLL_ATTEMPTS = _int('CONVERGE_POLL_ATTEMPTS', '24')
    CONVERGE_POLL_INTERVAL = _float('CONVERGE_POLL_INTERVAL', '5')
    STUCK_AFTER_MINUTES = _int('STUCK_AFTER_MINUTES', '30')

    # Action execution
    RUN_ACTIONS_IN_BACKGROUND = os.getenv('RUN_ACTIONS_IN_BACKGROUND', 'true').lower() == 'true'
    CRON_SECRET = os.getenv('CRON_SECRET', '')


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    # One shared connection so worker threads see the same in-memory database
    SQLALCHEMY_ENGINE_OPTIONS = {
        'poolclass': StaticPool,
        'connect_args': {'check_same_thread': False},
    }
    REDIS_URL = ''
    RUN_ACTIONS_IN_BACKGROUND = False
    CRON_SECRET = 'test-cron-secret'
    DOMAIN_SUFFIX = '.example.net'
    SLEEPER_PROXY_IP = ''
    PROVIDER_RETRY_DELAY = 0
    POWER_OFF_POLL_INTERVAL = 0
    CONVERGE_POLL_INTERVAL = 0


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


@dataclass(frozen=True)
class ComputeConfig:
    api_base: str
    token: str
    read_timeout: float = 5.0
    action_timeout: float = 30.0
    server_type: str = 'cx22'
    image: str = 'ubuntu-22.04'
    location: str = 'nbg1'
    ssh_keys: List[str] = field(default_factory=list)
    user_data: str = ''

    @classmethod
    def from_mapping(cls, cfg: Mapping) -> "ComputeConfig":
        keys = [k.strip() for k in cfg.get('HETZNER_SSH_KEYS', '').split(',') if k.strip()]
        return cls(
            api_base=cfg['HETZNER_API_BASE'],
            token=cfg['HETZNER_API_TOKEN'],
            read_timeout=cfg['PROVIDER_READ_TIMEOUT'],
            action_timeout=cfg['PROVIDER_ACTION_TIMEOUT'],
            server_type=cfg['HETZNER_SERVER_TYPE'],
            image=cfg['HETZNER_IMAGE'],
            location=cfg['HETZNER_LOCATION'],
            ssh_keys=keys,
            user_data=cfg.get('SERVER_USER_DATA', ''),
        )


@dataclass(frozen=True)
class DNSConfig:
    api_base: str
    token: str
    zone_id: str
    domain_suffix: str = '.example.net'
    service_label: str = '_minecraft'
    game_port: int = 25565
    sleeper_ip: Optional[str] = None
    read_timeout: float = 5.0
    action_timeout: float = 30.0

    @classmethod
    def from_mapping(cls, cfg: Mapping) -> "DNSConfig":
        return cls(
            api_base=cfg['CLOUDFLARE_API_BASE'],
            token=cfg['CLOUDFLARE_API_TOKEN'],
            zone_id=cfg['CLOUDFLARE_ZONE_ID'],
            domain_suffix=cfg['DOMAIN_SUFFIX'],
            service_label=cfg['DNS_SERVICE_LABEL'],
            game_port=cfg['GAME_PORT'],
            sleeper_ip=cfg.get('SLEEPER_PROXY_IP') or None,
            read_timeout=cfg['PROVIDER_READ_TIMEOUT'],
            action_timeout=cfg['PROVIDER_ACTION_TIMEOUT'],
        )


@dataclass(frozen=True)
class StorageConfig:
    bucket: str
    endpoint_url: Optional[str] = None
    region: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    read_timeout: float = 5.0
    action_timeout: float = 30.0

    @classmethod
    def from_mapping(cls, cfg: Mapping) -> "StorageConfig":
        return cls(
            bucket=cfg['S3_BUCKET'],
            endpoint_url=cfg.get('S3_ENDPOINT') or None,
            region=cfg.get('S3_REGION') or None,
            access_key_id=cfg.get('AWS_ACCESS_KEY_ID') or None,
            secret_access_key=cfg.get('AWS_SECRET_ACCESS_KEY') or None,
            read_timeout=cfg['PROVIDER_READ_TIMEOUT'],
            action_timeout=cfg['PROVIDER_ACTION_TIMEOUT'],
        )


@dataclass(frozen=True)
class OrchestratorConfig:
    provider_retry: RetryPolicy = RetryPolicy(3, 2.0)
    power_off_poll: RetryPolicy = RetryPolicy(30, 5.0)
    converge_poll: RetryPolicy = RetryPolicy(24, 5.0)
    storage_prefix: str = 'servers/'
    stuck_after_minutes: int = 30

    @classmethod
    def from_mapping(cls, cfg: Mapping) -> "OrchestratorConfig":
        return cls(
            provider_retry=RetryPolicy(cfg['PROVIDER_RETRY_ATTEMPTS'], cfg['PROVIDER_RETRY_DELAY']),
            power_off_poll=RetryPolicy(cfg['POWER_OFF_POLL_ATTEMPTS'], cfg['POWER_OFF_POLL_INTERVAL']),
            converge_poll=RetryPolicy(cfg['CONVERGE_POLL_ATTEMPTS'], cfg['CONVERGE_POLL_INTERVAL']),
            storage_prefix=cfg['STORAGE_PREFIX'],
            stuck_after_minutes=cfg['STUCK_AFTER_MINUTES'],
        )
