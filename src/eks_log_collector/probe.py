"""
Environment probe: init system, package manager, node identity and the two
preconditions (root, free disk space) that can end a run.
"""

import os
import shutil
import socket

import requests

from .config import HTTP_TIMEOUT, IMDS_URL, MIN_FREE_DISK_KB
from .models import InitVariant, PkgVariant, InsufficientPrivilege, InsufficientDiskSpace

IMDS_TOKEN_TTL_SECONDS = 60


def detect_init_system(host_root: str = '/') -> InitVariant:
    """systemd installs /sbin/init as a symlink to its own binary."""
    if os.path.islink(os.path.join(host_root, 'sbin/init')):
        return InitVariant.SYSTEMD
    return InitVariant.OTHER


def detect_package_manager() -> PkgVariant:
    if shutil.which('rpm'):
        return PkgVariant.RPM
    if shutil.which('dpkg'):
        return PkgVariant.DEB
    return PkgVariant.UNKNOWN


def resolve_node_id(timeout: float = HTTP_TIMEOUT) -> str:
    """
    Resolve the EC2 instance id from the instance metadata service.

    Tries IMDSv2 first and falls back to an unauthenticated IMDSv1 request.
    Off EC2, or if IMDS is unreachable, the host name is used instead.
    """
    headers = {}
    try:
        token = requests.put(
            f'{IMDS_URL}/api/token',
            headers={'X-aws-ec2-metadata-token-ttl-seconds': str(IMDS_TOKEN_TTL_SECONDS)},
            timeout=timeout,
        )
        if token.ok:
            headers['X-aws-ec2-metadata-token'] = token.text
    except requests.exceptions.RequestException:
        pass

    try:
        response = requests.get(f'{IMDS_URL}/meta-data/instance-id', headers=headers, timeout=timeout)
        response.raise_for_status()
        instance_id = response.text.strip()
        if instance_id:
            return instance_id
    except requests.exceptions.RequestException as e:
        print(f"Warning: Could not resolve instance-id from instance metadata: {str(e)}")

    return socket.gethostname()


def check_root() -> None:
    if os.geteuid() != 0:
        raise InsufficientPrivilege('This script must be run as root!')


def check_disk_space(path: str = '/', threshold_kb: int = MIN_FREE_DISK_KB) -> int:
    """Return free KiB at path, raising InsufficientDiskSpace below threshold_kb."""
    free_kb = shutil.disk_usage(path).free // 1024
    if free_kb < threshold_kb:
        raise InsufficientDiskSpace(
            f'Less than {threshold_kb >> 10}MB, please ensure adequate disk space '
            f'to collect and store the log files.'
        )
    return free_kb
