"""
Runtime configuration and the enumerated collection sets.

Paths, timeouts and thresholds come from the environment. What gets collected
is the fixed data below; changing the collection means changing these sets,
not the collector functions.
"""

import os

from . import __version__


PROGRAM_NAME = 'eks-log-collector'
PROGRAM_VERSION = __version__
PROGRAM_SOURCE = 'https://github.com/awslabs/amazon-eks-ami'


def _parse_positive_int_env(name: str, default: int) -> int:
    """Read a positive integer env var, defaulting on missing or invalid values."""
    raw = os.environ.get(name, '')
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if value <= 0:
        return default
    return value


# Environment
PROGRAM_DIR = os.environ.get('EKS_LOG_COLLECTOR_DIR', '/opt/log-collector')
COLLECT_DIR = os.environ.get('EKS_LOG_COLLECTOR_STAGING_DIR', f'/tmp/{PROGRAM_NAME}')
LOGS_BUCKET = os.environ.get('LOGS_BUCKET_NAME', '')
AWS_REGION = os.environ.get('AWS_REGION', '')

COMMAND_TIMEOUT = _parse_positive_int_env('COMMAND_TIMEOUT_SECONDS', 75)
HTTP_TIMEOUT = _parse_positive_int_env('HTTP_TIMEOUT_SECONDS', 3)
MIN_FREE_DISK_KB = _parse_positive_int_env('MIN_FREE_DISK_KB', 1500000)

JOURNAL_SINCE_DAYS = 7

IMDS_URL = 'http://169.254.169.254/latest'
IPAMD_URL = 'http://localhost:61678'
KUBELET_URL = 'http://localhost:10255'

MANIFEST_FILE = 'manifest.json'
WARNINGS_FILE = 'warnings.txt'

# =============================================================================
# COLLECTION SETS
# =============================================================================

COMMON_DIRECTORIES = (
    'kernel',
    'system',
    'docker',
    'storage',
    'var_log',
    'networking',
    'ipamd',     # eks
    'sysctls',   # eks
    'kubelet',   # eks
    'cni',       # eks
)

COMMON_LOGS = (
    'syslog',
    'messages',
    'aws-routed-eni',  # eks
    'containers',      # eks
    'pods',            # eks
    'cloud-init.log',
    'cloud-init-output.log',
    'audit',
)

# L-IPAMD introspection endpoints, served under /v1/
IPAMD_DATA = (
    'enis',
    'pods',
    'networkutils-env-settings',
    'ipamd-env-settings',
    'eni-configs',
)
IPAMD_METRICS_PATH = 'metrics'

# Interfaces whose rp_filter setting is captured
SYSCTLS_DATA = (
    'all',
    'default',
    'eth0',
)

# Kubelet read-only port endpoints
KUBELET_DATA = (
    'pods',
    'stats',
    'eth0',
)

KUBELET_UNITS = (
    'kubelet',
    'kube-proxy',
)

DOCKER_LOG_PATHS = (
    'docker',
    'upstart/docker',
)

DOCKER_SYSCONFIG = '/etc/sysconfig/docker'

# (output file, argv) tables for the command-driven collectors
LVM_COMMANDS = (
    ('lvs.txt', ('lvs',)),
    ('pvs.txt', ('pvs',)),
    ('vgs.txt', ('vgs',)),
)

IPTABLES_COMMANDS = (
    ('iptables-filter.txt', ('iptables', '--numeric', '--verbose', '--list', '--table', 'filter')),
    ('iptables-nat.txt', ('iptables', '--numeric', '--verbose', '--list', '--table', 'nat')),
    ('iptables-save.out', ('iptables-save',)),
)

PROCESS_COMMANDS = (
    ('top.txt', ('top', '-b', '-n', '1')),
    ('ps.txt', ('ps', 'fauxwww')),
    ('netstat.txt', ('netstat', '-plant')),
)

NETWORKING_COMMANDS = (
    ('ifconfig.txt', ('ifconfig',)),
    ('iprule.txt', ('ip', 'rule', 'show')),
    ('iproute.txt', ('ip', 'route', 'show', 'table', 'all')),
)

DOCKER_INFO_COMMANDS = (
    ('docker-info.txt', ('docker', 'info')),
    ('docker-ps.txt', ('docker', 'ps', '--all', '--no-trunc')),
    ('docker-images.txt', ('docker', 'images')),
    ('docker-version.txt', ('docker', 'version')),
)

# (output file, journal unit)
KUBELET_JOURNAL_UNITS = (
    ('kubelet.log', 'kubelet'),
    ('kubeproxy.log', 'kube-proxy'),
)
