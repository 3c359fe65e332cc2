"""
enable_debug mode: turn on Docker daemon debug logging.
"""

import re

from .config import DOCKER_SYSCONFIG
from .models import CollectionContext, CollectionStatus, PkgVariant, StepResult, UnsupportedPlatform
from .runner import run_command

DEBUG_OPTIONS_RE = re.compile(r'^\s*OPTIONS="-D', re.MULTILINE)
DEBUG_OPTIONS_LINE = 'OPTIONS="-D $OPTIONS"\n'


def enable_docker_debug(ctx: CollectionContext) -> StepResult:
    """
    Prepend -D to the daemon OPTIONS in /etc/sysconfig/docker and restart it.

    Only RPM-based hosts keep daemon options in sysconfig; any other package
    variant raises UnsupportedPlatform and leaves the configuration untouched.
    """
    if ctx.pkg_variant is not PkgVariant.RPM:
        raise UnsupportedPlatform('The current operating system is not supported.')

    sysconfig = ctx.host_path(DOCKER_SYSCONFIG)
    try:
        with open(sysconfig) as f:
            current = f.read()
    except FileNotFoundError:
        return StepResult('docker debug', CollectionStatus.SKIPPED, f'{DOCKER_SYSCONFIG} not found')

    if DEBUG_OPTIONS_RE.search(current):
        print('Debug mode is already enabled.')
        return StepResult('docker debug', CollectionStatus.SUCCESS, 'already enabled', sysconfig)

    with open(sysconfig, 'a') as f:
        if current and not current.endswith('\n'):
            f.write('\n')
        f.write(DEBUG_OPTIONS_LINE)

    print('Trying to restart Docker daemon to enable debug mode... ', end='', flush=True)
    restart = run_command(['service', 'docker', 'restart'], capture=True)
    if not restart.ok:
        print(restart.status.value)
        print(f"\tWarning: {restart.reason}")
        return StepResult('docker restart', restart.status, restart.reason, sysconfig)

    print('ok')
    return StepResult('docker debug', CollectionStatus.SUCCESS, path=sysconfig)
