"""
Collector registry.

Each collector owns exactly one staging category and receives a
CategoryOutput, the only handle it may write through. Collectors never raise
for missing tools, files or daemons: every sub-step is recorded as a
StepResult and aggregated into a CollectionResult.
"""

import os
import shutil
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional, Sequence

from .config import (
    COMMAND_TIMEOUT,
    COMMON_LOGS,
    DOCKER_INFO_COMMANDS,
    DOCKER_LOG_PATHS,
    HTTP_TIMEOUT,
    IPAMD_DATA,
    IPAMD_METRICS_PATH,
    IPAMD_URL,
    IPTABLES_COMMANDS,
    JOURNAL_SINCE_DAYS,
    KUBELET_DATA,
    KUBELET_JOURNAL_UNITS,
    KUBELET_UNITS,
    KUBELET_URL,
    LVM_COMMANDS,
    NETWORKING_COMMANDS,
    PROCESS_COMMANDS,
    SYSCTLS_DATA,
    WARNINGS_FILE,
)
from .models import (
    CollectionContext,
    CollectionResult,
    CollectionStatus,
    CommandResult,
    InitVariant,
    PkgVariant,
    StepResult,
)
from .runner import command_exists, fetch_url, run_command

UNSUPPORTED_OS = 'The current operating system is not supported.'


class CategoryOutput:
    """Write handle scoped to one category directory of the staging tree."""

    def __init__(self, ctx: CollectionContext, category: str):
        self.ctx = ctx
        self.category = category
        self.root = os.path.realpath(ctx.category_dir(category))
        self.steps: List[StepResult] = []

    def path(self, name: str) -> str:
        """Resolve name inside the category directory, rejecting anything outside it."""
        candidate = os.path.realpath(os.path.join(self.root, name))
        if candidate == self.root or not candidate.startswith(self.root + os.sep):
            raise ValueError(f"'{name}' is outside the {self.category} directory")
        return candidate

    def record(self, name: str, status: CollectionStatus, reason: str = '',
               path: Optional[str] = None) -> StepResult:
        step = StepResult(name=name, status=status, reason=reason, path=path)
        self.steps.append(step)
        return step

    def command(self, name: str, args: Sequence[str], append: bool = False,
                timeout: float = COMMAND_TIMEOUT) -> CommandResult:
        result = run_command(list(args), timeout=timeout, path=self.path(name), append=append)
        self.record(' '.join(args), result.status, result.reason, result.path)
        return result

    def fetch(self, name: str, url: str, timeout: float = HTTP_TIMEOUT) -> CommandResult:
        result = fetch_url(url, timeout=timeout, path=self.path(name))
        self.record(url, result.status, result.reason, result.path)
        return result

    def write_text(self, name: str, text: str, append: bool = False,
                   step: Optional[str] = None) -> None:
        """Write text into the category; recorded as a step only when step is given."""
        dest = self.path(name)
        try:
            with open(dest, 'a' if append else 'w') as f:
                f.write(text)
        except OSError as e:
            self.record(step or name, CollectionStatus.PARTIAL_FAILURE, f'write failed: {e}')
            return
        if step:
            self.record(step, CollectionStatus.SUCCESS, path=dest)

    def copy(self, src: str, name: Optional[str] = None, step: Optional[str] = None) -> StepResult:
        """Copy a host file or directory into the category. Missing sources are SKIPPED."""
        step = step or src
        if not os.path.lexists(src):
            return self.record(step, CollectionStatus.SKIPPED, f'{src} not found')
        dest = self.path(name or os.path.basename(src.rstrip('/')))
        try:
            if os.path.isdir(src):
                shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)
            else:
                shutil.copy2(src, dest)
        except OSError as e:
            return self.record(step, CollectionStatus.PARTIAL_FAILURE, f'copy failed: {e}')
        return self.record(step, CollectionStatus.SUCCESS, path=dest)

    def read_into(self, src: str, name: str, step: Optional[str] = None) -> StepResult:
        """Copy the text of a pseudo-file (e.g. under /proc) whose size reports as zero."""
        step = step or src
        try:
            with open(src) as f:
                content = f.read()
        except FileNotFoundError:
            return self.record(step, CollectionStatus.SKIPPED, f'{src} not found')
        except OSError as e:
            return self.record(step, CollectionStatus.PARTIAL_FAILURE, f'read failed: {e}')
        dest = self.path(name)
        with open(dest, 'w') as f:
            f.write(content)
        return self.record(step, CollectionStatus.SUCCESS, path=dest)

    def write_warnings(self, collector: str) -> None:
        """Document every non-successful step inside the category itself."""
        lines = [
            f'[{collector}] {s.name}: {s.status.value}: {s.reason}\n'
            for s in self.steps if s.status is not CollectionStatus.SUCCESS
        ]
        if lines:
            with open(self.path(WARNINGS_FILE), 'a') as f:
                f.writelines(lines)


@dataclass(frozen=True)
class Collector:
    name: str
    category: str
    description: str
    func: Callable[[CollectionContext, CategoryOutput], None]

    def run(self, ctx: CollectionContext) -> CollectionResult:
        out = CategoryOutput(ctx, self.category)
        try:
            self.func(ctx, out)
        except Exception as e:
            out.record(self.name, CollectionStatus.PARTIAL_FAILURE, f'unexpected error: {str(e)}')
        result = CollectionResult.from_steps(self.name, self.category, out.steps)
        try:
            out.write_warnings(self.name)
        except OSError as e:
            print(f"Warning: Could not write {WARNINGS_FILE} for {self.category}: {str(e)}")
        return result


# =============================================================================
# HELPERS
# =============================================================================

def journal_since(ctx: CollectionContext) -> str:
    """Local-time --since value covering the journal window before the run started."""
    start = ctx.timestamp.astimezone() - timedelta(days=JOURNAL_SINCE_DAYS)
    return start.strftime('%Y-%m-%d %H:%M')


def docker_available(out: CategoryOutput) -> bool:
    """
    Gate for the container runtime group: the docker CLI must exist and dockerd
    must be running. Without pgrep the docker commands report for themselves.
    """
    if not command_exists('docker'):
        out.record('docker', CollectionStatus.SKIPPED, 'command not found: docker')
        return False
    daemon = run_command(['pgrep', 'dockerd'], capture=True)
    if daemon.status is CollectionStatus.PARTIAL_FAILURE:
        out.record('dockerd', CollectionStatus.PARTIAL_FAILURE, 'The Docker daemon is not running.')
        return False
    return True


def _first_column(text: str) -> List[str]:
    seen = []
    for line in text.splitlines():
        parts = line.split()
        if parts and parts[0] not in seen:
            seen.append(parts[0])
    return seen


# =============================================================================
# COLLECTORS
# =============================================================================

def collect_instance_identity(ctx: CollectionContext, out: CategoryOutput) -> None:
    out.write_text('instance-id.txt', f'{ctx.node_id}\n', step='instance-id')


def collect_common_logs(ctx: CollectionContext, out: CategoryOutput) -> None:
    for entry in COMMON_LOGS:
        out.copy(ctx.host_path(f'/var/log/{entry}'), entry, step=f'/var/log/{entry}')


def collect_kernel_logs(ctx: CollectionContext, out: CategoryOutput) -> None:
    out.copy(ctx.host_path('/var/log/dmesg'), 'dmesg.boot', step='/var/log/dmesg')
    out.command('dmesg.current', ['dmesg'])


def collect_mounts_info(ctx: CollectionContext, out: CategoryOutput) -> None:
    out.command('mounts.txt', ['mount'])
    out.write_text('mounts.txt', '\n', append=True)
    out.command('mounts.txt', ['df', '--human-readable'], append=True)
    out.command('lsblk.txt', ['lsblk'])

    if not os.path.exists(ctx.host_path('/sbin/lvs')):
        out.record('lvm', CollectionStatus.SKIPPED, '/sbin/lvs not found')
        return
    for name, args in LVM_COMMANDS:
        out.command(name, args)


def collect_selinux_info(ctx: CollectionContext, out: CategoryOutput) -> None:
    result = run_command(['getenforce'], capture=True)
    mode = result.output.strip() if result.ok else ''
    out.write_text('selinux.txt', f'SELinux mode:\n\t {mode or "Not installed"}\n', step='getenforce')


def collect_iptables_info(ctx: CollectionContext, out: CategoryOutput) -> None:
    for name, args in IPTABLES_COMMANDS:
        out.command(name, args)


def collect_pkglist(ctx: CollectionContext, out: CategoryOutput) -> None:
    if ctx.pkg_variant is PkgVariant.RPM:
        out.command('pkglist.txt', ['rpm', '-qa'])
    elif ctx.pkg_variant is PkgVariant.DEB:
        out.command('pkglist.txt', ['dpkg', '--list'])
    else:
        out.record('pkglist', CollectionStatus.UNSUPPORTED_PLATFORM, 'Unknown package type.')


def collect_system_services(ctx: CollectionContext, out: CategoryOutput) -> None:
    if ctx.init_variant is InitVariant.SYSTEMD:
        out.command('services.txt', ['systemctl', 'list-units'])
    elif ctx.init_variant is InitVariant.OTHER:
        jobs = run_command(['initctl', 'list'], capture=True)
        if jobs.ok:
            for job in _first_column(jobs.output):
                out.command('services.txt', ['initctl', 'show-config', job], append=True)
        else:
            out.record('initctl list', jobs.status, jobs.reason)
        out.write_text('services.txt', '\n\n\n\n', append=True)
        out.command('services.txt', ['service', '--status-all'], append=True)
    else:
        out.record('services', CollectionStatus.UNSUPPORTED_PLATFORM, 'Unable to determine active services.')

    for name, args in PROCESS_COMMANDS:
        out.command(name, args)


def collect_docker_info(ctx: CollectionContext, out: CategoryOutput) -> None:
    if not docker_available(out):
        return
    for name, args in DOCKER_INFO_COMMANDS:
        out.command(name, args)


def collect_eks_logs_and_configfiles(ctx: CollectionContext, out: CategoryOutput) -> None:
    if ctx.init_variant is not InitVariant.SYSTEMD:
        out.record('journal', CollectionStatus.UNSUPPORTED_PLATFORM, UNSUPPORTED_OS)
        return

    since = journal_since(ctx)
    for name, unit in KUBELET_JOURNAL_UNITS:
        out.command(name, ['journalctl', f'--unit={unit}', '--since', since])
    out.command('kubeconfig.yaml', ['kubectl', 'config', 'view', '--output', 'yaml'])

    for unit in KUBELET_UNITS:
        unit_file = f'/etc/systemd/system/{unit}.service'
        out.copy(ctx.host_path(unit_file), step=unit_file)


def collect_ipamd_info(ctx: CollectionContext, out: CategoryOutput) -> None:
    for entry in IPAMD_DATA:
        out.fetch(f'{entry}.txt', f'{IPAMD_URL}/v1/{entry}')
    out.fetch('metrics.txt', f'{IPAMD_URL}/{IPAMD_METRICS_PATH}')


def collect_sysctls_info(ctx: CollectionContext, out: CategoryOutput) -> None:
    for entry in SYSCTLS_DATA:
        source = f'/proc/sys/net/ipv4/conf/{entry}/rp_filter'
        out.read_into(ctx.host_path(source), f'{entry}.txt', step=source)


def collect_networking_info(ctx: CollectionContext, out: CategoryOutput) -> None:
    for name, args in NETWORKING_COMMANDS:
        out.command(name, args)


def collect_cni_config(ctx: CollectionContext, out: CategoryOutput) -> None:
    cni_dir = ctx.host_path('/etc/cni/net.d')
    if not os.path.isdir(cni_dir):
        out.record('/etc/cni/net.d', CollectionStatus.SKIPPED, f'{cni_dir} not found')
        return
    entries = sorted(os.listdir(cni_dir))
    if not entries:
        out.record('/etc/cni/net.d', CollectionStatus.SKIPPED, 'no CNI configuration files')
    for entry in entries:
        out.copy(os.path.join(cni_dir, entry), entry, step=f'/etc/cni/net.d/{entry}')


def collect_kubelet_info(ctx: CollectionContext, out: CategoryOutput) -> None:
    for entry in KUBELET_DATA:
        out.fetch(f'{entry}.json', f'{KUBELET_URL}/{entry}')


def collect_containers_info(ctx: CollectionContext, out: CategoryOutput) -> None:
    if not docker_available(out):
        return
    listing = run_command(['docker', 'ps', '-q'], capture=True)
    if not listing.ok:
        out.record('docker ps -q', listing.status, listing.reason)
        return
    container_ids = listing.output.split()
    if not container_ids:
        out.record('docker inspect', CollectionStatus.SKIPPED, 'no running containers')
    for container_id in container_ids:
        out.command(f'container-{container_id}.txt', ['docker', 'inspect', container_id])


def collect_docker_logs(ctx: CollectionContext, out: CategoryOutput) -> None:
    if ctx.init_variant is InitVariant.SYSTEMD:
        out.command('docker.log', ['journalctl', '--unit=docker', '--since', journal_since(ctx)])
    elif ctx.init_variant is InitVariant.OTHER:
        for entry in DOCKER_LOG_PATHS:
            out.copy(ctx.host_path(f'/var/log/{entry}'), entry.replace('/', '-'), step=f'/var/log/{entry}')
    else:
        out.record('docker logs', CollectionStatus.UNSUPPORTED_PLATFORM, UNSUPPORTED_OS)


# Fixed run order; only the console log depends on it.
COLLECTORS = [
    Collector('instance_identity', 'system', 'record the instance-id', collect_instance_identity),
    Collector('common_logs', 'var_log', 'collect common operating system logs', collect_common_logs),
    Collector('kernel_logs', 'kernel', 'collect kernel logs', collect_kernel_logs),
    Collector('mounts_info', 'storage', 'get mount points and volume information', collect_mounts_info),
    Collector('selinux_info', 'system', 'check SELinux status', collect_selinux_info),
    Collector('iptables_info', 'networking', 'get iptables list', collect_iptables_info),
    Collector('pkglist', 'system', 'detect installed packages', collect_pkglist),
    Collector('system_services', 'system', 'detect active system services list', collect_system_services),
    Collector('docker_info', 'docker', 'gather Docker daemon information', collect_docker_info),
    Collector('eks_logs', 'kubelet', 'collect Amazon EKS container agent logs', collect_eks_logs_and_configfiles),
    Collector('ipamd_info', 'ipamd', 'collect L-IPAMD information', collect_ipamd_info),
    Collector('sysctls_info', 'sysctls', 'collect sysctls information', collect_sysctls_info),
    Collector('networking_info', 'networking', 'collect networking information', collect_networking_info),
    Collector('cni_config', 'cni', 'collect CNI configuration information', collect_cni_config),
    Collector('kubelet_info', 'kubelet', 'collect Kubelet information', collect_kubelet_info),
    Collector('containers_info', 'docker', 'inspect running Docker containers and gather container data',
              collect_containers_info),
    Collector('docker_logs', 'docker', 'collect Docker daemon logs', collect_docker_logs),
]


def run_collectors(ctx: CollectionContext, collectors: List[Collector] = None) -> List[CollectionResult]:
    """Run every collector in order, printing one progress line each."""
    results = []
    for collector in collectors if collectors is not None else COLLECTORS:
        print(f'Trying to {collector.description}... ', end='', flush=True)
        result = collector.run(ctx)
        if result.status is CollectionStatus.SUCCESS:
            print('ok')
        else:
            print(result.status.value)
            print(f"\tWarning: {result.reason}")
        results.append(result)
    return results
