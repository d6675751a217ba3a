#!/usr/bin/env python3
"""
Configuration constants for chiro-deploy.

CRITICAL: This is the SINGLE SOURCE OF TRUTH for config filenames, built-in
defaults and CLI exit codes. Other modules MUST import from this file instead
of using hardcoded strings.

Naming Convention:
- *.defaults.toml.j2 = Template defaults (committed)
- *.toml.j2 = Template overrides (gitignored)
- *.toml = Rendered runtime config (gitignored)
"""

# ============================================================================
# TOML Configuration Filenames (CANONICAL - DO NOT HARDCODE)
# ============================================================================

DEPLOY_CONFIG_DEFAULTS = 'chiro-deploy.defaults.toml.j2'
DEPLOY_CONFIG_OVERRIDES = 'chiro-deploy.toml.j2'
DEPLOY_CONFIG_RENDERED = 'chiro-deploy.toml'

# Files that mark a repository root when walking up from the cwd
REPO_ROOT_MARKERS = (
    DEPLOY_CONFIG_DEFAULTS,
    DEPLOY_CONFIG_OVERRIDES,
    'docker-compose.yml',
)

REPO_ROOT_ENV_VAR = 'CHIRO_REPO_ROOT'

# ============================================================================
# Backend
# ============================================================================

BACKEND_BINARY = 'docker'
COMPOSE_SUBCOMMAND = 'compose'
COMPOSE_PROJECT_LABEL = 'com.docker.compose.project'

# ============================================================================
# CLI exit codes
# ============================================================================

EXIT_SUCCESS = 0
EXIT_OPERATION_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_EXECUTION_ERROR = 3
EXIT_CANCELLED = 130

# ============================================================================
# Built-in defaults (overridden by rendered TOML, key-level deep merge)
# ============================================================================

DEFAULT_SETTINGS = {
    'deploy': {
        'project_name': 'chiro-erp',
        'default_environment': 'dev',
        'settle_seconds': 15,
        'logs_tail': 100,
        'command_timeout': 900,
        'probe_timeout': 5,
        'probe_workers': 4,
    },
    'topology': {
        'infrastructure': ['postgres', 'zookeeper', 'kafka', 'redis'],
        'applications': [
            'api-gateway',
            'core-business-service',
            'customer-relations-service',
            'operations-management-service',
            'platform-services',
            'workforce-management-service',
        ],
    },
    'environments': {
        'dev': {
            'compose_file': 'docker-compose.yml',
            'env_file': '.env.dev',
            'log_level': 'DEBUG',
        },
        'staging': {
            'compose_file': 'docker-compose.staging.yml',
            'env_file': '.env.staging',
            'log_level': 'INFO',
        },
        'prod': {
            'compose_file': 'docker-compose.prod.yml',
            'env_file': '.env.prod',
            'log_level': 'WARNING',
            'allowed_operations': ['build', 'up', 'down', 'restart', 'logs', 'status'],
        },
    },
    'health': {
        'probes': [
            {'service': 'postgres', 'kind': 'container'},
            {'service': 'kafka', 'kind': 'container'},
            {'service': 'redis', 'kind': 'container'},
            {'service': 'api-gateway', 'kind': 'http', 'target': 'http://localhost:8080/q/health/ready'},
            {'service': 'core-business-service', 'kind': 'http', 'target': 'http://localhost:8081/q/health/ready'},
        ],
    },
}
