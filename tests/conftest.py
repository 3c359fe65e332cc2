"""
Shared fixtures: a fake host filesystem, a fake command/HTTP layer, and
helpers for building a CollectionContext.
"""

import os
from collections import namedtuple
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set
from unittest.mock import patch

import pytest

from eks_log_collector.config import COMMON_DIRECTORIES
from eks_log_collector.models import (
    CollectionContext,
    CollectionStatus,
    CommandResult,
    InitVariant,
    PkgVariant,
)
from eks_log_collector.tree import create_tree

INSTANCE_ID = 'i-0123456789abcdef0'

DiskUsage = namedtuple('DiskUsage', ['total', 'used', 'free'])
PLENTY_OF_DISK = DiskUsage(total=100 * 2**30, used=10 * 2**30, free=90 * 2**30)
ALMOST_FULL_DISK = DiskUsage(total=100 * 2**30, used=100 * 2**30 - 2**20, free=2**20)


class FakeHost:
    """
    Stands in for runner.run_command / runner.fetch_url / runner.command_exists.

    Every binary exists unless listed in `missing`; binaries in `timeouts` time
    out; dockerd can be switched off; local HTTP endpoints can be taken down.
    """

    def __init__(self):
        self.outputs: Dict[str, str] = {
            'docker ps -q': 'abc123\ndef456\n',
            'initctl list': 'tty (/dev/tty1) start/running, process 1\nrc stop/waiting\n',
            'getenforce': 'Enforcing\n',
        }
        self.missing: Set[str] = set()
        self.timeouts: Set[str] = set()
        self.dockerd_running = True
        self.endpoints_up = True
        self.calls: List[List[str]] = []
        self.urls: List[str] = []

    def command_exists(self, name: str) -> bool:
        return name not in self.missing

    def run_command(self, args, timeout=75, path: Optional[str] = None, append=False, capture=False):
        args = list(args)
        self.calls.append(args)
        target = ' '.join(args)
        if not self.command_exists(args[0]):
            return CommandResult(target, CollectionStatus.SKIPPED, reason=f'command not found: {args[0]}')
        if args[0] in self.timeouts:
            return CommandResult(target, CollectionStatus.PARTIAL_FAILURE,
                                 reason=f'timed out after {timeout}s', path=path)
        if args[:2] == ['pgrep', 'dockerd']:
            if self.dockerd_running:
                return CommandResult(target, CollectionStatus.SUCCESS, 0, output='1234\n')
            return CommandResult(target, CollectionStatus.PARTIAL_FAILURE, 1, reason='exit code 1')
        if args[0] == 'docker' and not self.dockerd_running:
            return CommandResult(target, CollectionStatus.PARTIAL_FAILURE, 1,
                                 reason='exit code 1: Cannot connect to the Docker daemon', path=path)

        output = self.outputs.get(target, f'{target} output\n')
        if path:
            with open(path, 'a' if append else 'w') as f:
                f.write(output)
        return CommandResult(target, CollectionStatus.SUCCESS, 0, output=output, path=path)

    def fetch_url(self, url: str, timeout=3, path: Optional[str] = None):
        self.urls.append(url)
        if not self.endpoints_up:
            return CommandResult(url, CollectionStatus.PARTIAL_FAILURE, reason='endpoint unreachable', path=path)
        body = f'{{"url": "{url}"}}'
        if path:
            with open(path, 'w') as f:
                f.write(body)
        return CommandResult(url, CollectionStatus.SUCCESS, 200, output=body, path=path)


@contextmanager
def patched_host(host: FakeHost):
    with patch('eks_log_collector.collectors.run_command', host.run_command), \
            patch('eks_log_collector.collectors.fetch_url', host.fetch_url), \
            patch('eks_log_collector.collectors.command_exists', host.command_exists), \
            patch('eks_log_collector.debug.run_command', host.run_command):
        yield host


@pytest.fixture
def fake_host():
    with patched_host(FakeHost()) as host:
        yield host


def _write(path: str, content: str = '') -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as f:
        f.write(content)


def build_host_root(r: str) -> str:
    """Populate a systemd-flavoured host filesystem with the files the collectors read."""
    _write(os.path.join(r, 'var/log/messages'), 'Jan 1 kubelet started\n')
    _write(os.path.join(r, 'var/log/cloud-init.log'), 'cloud-init ran\n')
    _write(os.path.join(r, 'var/log/aws-routed-eni/ipamd.log'), '{"level":"info"}\n')
    _write(os.path.join(r, 'var/log/dmesg'), '[0.000000] Linux version\n')
    _write(os.path.join(r, 'etc/systemd/system/kubelet.service'), '[Service]\n')
    _write(os.path.join(r, 'etc/cni/net.d/10-aws.conflist'), '{"cniVersion": "0.4.0"}\n')
    for entry in ('all', 'default', 'eth0'):
        _write(os.path.join(r, f'proc/sys/net/ipv4/conf/{entry}/rp_filter'), '1\n')
    _write(os.path.join(r, 'lib/systemd/systemd'), '')
    os.makedirs(os.path.join(r, 'sbin'), exist_ok=True)
    os.symlink('../lib/systemd/systemd', os.path.join(r, 'sbin/init'))
    return r


@pytest.fixture
def host_root(tmp_path):
    return build_host_root(str(tmp_path / 'host'))


@pytest.fixture
def make_context(tmp_path, host_root):
    """Factory for a context whose staging tree already exists."""
    def _make(init_variant=InitVariant.SYSTEMD, pkg_variant=PkgVariant.RPM, staging=None):
        staging_dir = staging or str(tmp_path / 'staging')
        create_tree(staging_dir, COMMON_DIRECTORIES)
        return CollectionContext(
            node_id=INSTANCE_ID,
            staging_dir=staging_dir,
            init_variant=init_variant,
            pkg_variant=pkg_variant,
            version='0.0.1',
            timestamp=datetime(2024, 3, 5, 14, 7, 9, tzinfo=timezone.utc),
            host_root=host_root,
        )
    return _make


@contextmanager
def as_root_with_disk(disk=PLENTY_OF_DISK, pkg_variant=PkgVariant.RPM):
    """Pretend to be root on a host with the given disk usage and a known instance id."""
    with patch('eks_log_collector.probe.os.geteuid', return_value=0), \
            patch('eks_log_collector.probe.shutil.disk_usage', return_value=disk), \
            patch('eks_log_collector.cli.resolve_node_id', return_value=INSTANCE_ID), \
            patch('eks_log_collector.cli.detect_package_manager', return_value=pkg_variant):
        yield


@pytest.fixture
def root_with_disk():
    with as_root_with_disk():
        yield
