"""
Command line entry point and mode dispatcher.

    eks-log-collector --mode=collect|enable_debug
    eks-log-collector --help

collect:       INIT -> VALIDATING -> COLLECTING -> ARCHIVING -> CLEANING_UP -> DONE
enable_debug:  INIT -> VALIDATING -> RECONFIGURING_RUNTIME -> DONE

FATAL is reachable from VALIDATING (not root, not enough disk space, a staging
directory that holds something other than a previous collection), from
COLLECTING if the staging root cannot be created, and from
RECONFIGURING_RUNTIME on a platform with no debug configuration path.
"""

import argparse
import os
import signal
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from .archive import pack, upload_archive
from .collectors import COLLECTORS, Collector, run_collectors
from .config import (
    COLLECT_DIR,
    COMMON_DIRECTORIES,
    LOGS_BUCKET,
    PROGRAM_DIR,
    PROGRAM_NAME,
    PROGRAM_SOURCE,
    PROGRAM_VERSION,
)
from .debug import enable_docker_debug
from .models import (
    Archive,
    CollectionContext,
    CollectionResult,
    CollectionStatus,
    FatalError,
    StepResult,
    UnsupportedPlatform,
)
from .probe import check_disk_space, check_root, detect_init_system, detect_package_manager, resolve_node_id
from .tree import create_tree, destroy_tree, is_staging_tree, write_manifest

MODES = ('collect', 'enable_debug')

MODES_HELP = """\
modes:
  collect       Gathers basic operating system, Docker daemon, and Amazon
                EKS related config files and logs. This is the default mode.
  enable_debug  Enables debug mode for the Docker daemon
"""


class State(Enum):
    INIT = 'init'
    VALIDATING = 'validating'
    COLLECTING = 'collecting'
    ARCHIVING = 'archiving'
    CLEANING_UP = 'cleaning_up'
    RECONFIGURING_RUNTIME = 'reconfiguring_runtime'
    DONE = 'done'
    FATAL = 'fatal'


class _HelpOnErrorParser(argparse.ArgumentParser):
    """Unknown options or modes print the full help and exit 1."""

    def error(self, message):
        self.print_help(sys.stderr)
        self.exit(1, f'\n{self.prog}: error: {message}\n')


def build_parser() -> argparse.ArgumentParser:
    parser = _HelpOnErrorParser(
        prog=PROGRAM_NAME,
        description='Collect Amazon EKS worker node logs, or enable Docker daemon debug mode.',
        epilog=MODES_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        '--mode',
        choices=MODES,
        default='collect',
        help='Sets the desired mode of the script. For more information, see the modes section.',
    )
    return parser


def version_output() -> None:
    print(f"\n\tThis is version {PROGRAM_VERSION}. New versions can be found at {PROGRAM_SOURCE}\n")


def _existing_ancestor(path: str) -> str:
    path = os.path.abspath(path)
    while not os.path.exists(path):
        parent = os.path.dirname(path)
        if parent == path:
            break
        path = parent
    return path


class ModeDispatcher:
    """Runs one mode end to end and records the states it went through."""

    def __init__(
        self,
        mode: str = 'collect',
        staging_dir: str = COLLECT_DIR,
        install_dir: str = PROGRAM_DIR,
        host_root: str = '/',
        bucket: str = LOGS_BUCKET,
        collectors: Optional[List[Collector]] = None,
    ):
        if mode not in MODES:
            raise ValueError(f'Unknown mode: {mode}')
        self.mode = mode
        self.staging_dir = staging_dir
        self.install_dir = install_dir
        self.host_root = host_root
        self.bucket = bucket
        self.collectors = collectors if collectors is not None else COLLECTORS

        self.state = State.INIT
        self.history: List[State] = [State.INIT]
        self.context: Optional[CollectionContext] = None
        self.results: List[CollectionResult] = []
        self.archive: Optional[Archive] = None
        self.debug_result: Optional[StepResult] = None

    def _enter(self, state: State) -> None:
        self.state = state
        self.history.append(state)

    def run(self) -> int:
        """Run the selected mode. Returns the process exit code."""
        version_output()
        try:
            if self.mode == 'enable_debug':
                self._enable_debug()
            else:
                self._collect()
        except UnsupportedPlatform as e:
            self._enter(State.FATAL)
            self.debug_result = StepResult('docker debug', CollectionStatus.UNSUPPORTED_PLATFORM, str(e))
            print(f"\n\n\tWarning: {str(e)}")
            return 1
        except FatalError as e:
            self._enter(State.FATAL)
            print(f"ERROR: {str(e)}.. exiting...", file=sys.stderr)
            return 1

        self._enter(State.DONE)
        self._finished()
        return 0

    def _build_context(self) -> CollectionContext:
        print('Trying to resolve instance-id... ', end='', flush=True)
        node_id = resolve_node_id()
        print(node_id)
        return CollectionContext(
            node_id=node_id,
            staging_dir=self.staging_dir,
            init_variant=detect_init_system(self.host_root),
            pkg_variant=detect_package_manager(),
            version=PROGRAM_VERSION,
            timestamp=datetime.now(timezone.utc),
            host_root=self.host_root,
        )

    def _validate_root(self) -> None:
        print('Trying to check if the script is running as root... ', end='', flush=True)
        check_root()
        print('ok')

    def _collect(self) -> None:
        self._enter(State.VALIDATING)
        self._validate_root()
        print('Trying to check disk space usage... ', end='', flush=True)
        check_disk_space(_existing_ancestor(self.staging_dir))
        print('ok')
        if not is_staging_tree(self.staging_dir, COMMON_DIRECTORIES):
            raise FatalError(
                f'{self.staging_dir} is not empty and does not look like a previous collection, '
                f'refusing to remove it'
            )
        ctx = self._build_context()
        self.context = ctx

        self._enter(State.COLLECTING)
        destroy_tree(self.staging_dir)
        try:
            create_tree(self.staging_dir, COMMON_DIRECTORIES)
        except OSError as e:
            raise FatalError(f'Cannot create staging directory {self.staging_dir}: {str(e)}')

        try:
            self.results = run_collectors(ctx, self.collectors)
            write_manifest(self.staging_dir, ctx, COMMON_DIRECTORIES, self.results)

            self._enter(State.ARCHIVING)
            print('Trying to archive gathered log information... ', end='', flush=True)
            self.archive = pack(self.staging_dir, self.install_dir, ctx.node_id, ctx.timestamp, ctx.version)
            if self.archive is not None:
                print('ok')
                self.archive = upload_archive(self.archive, ctx.node_id, bucket=self.bucket)
        except KeyboardInterrupt:
            print(f"\nWarning: Interrupted, removing {self.staging_dir}")
            destroy_tree(self.staging_dir)
            raise

        self._enter(State.CLEANING_UP)
        if self.archive is not None:
            destroy_tree(self.staging_dir)
        else:
            print(f"Warning: Keeping {self.staging_dir} since no archive was created")

    def _enable_debug(self) -> None:
        self._enter(State.VALIDATING)
        self._validate_root()
        ctx = self._build_context()
        self.context = ctx

        self._enter(State.RECONFIGURING_RUNTIME)
        print('Trying to enable debug mode for the Docker daemon... ')
        self.debug_result = enable_docker_debug(ctx)
        if self.debug_result.status.is_skip:
            print(f"\tWarning: {self.debug_result.reason}")

    def _finished(self) -> None:
        if self.mode == 'collect':
            if self.archive is not None:
                print(f"\n\tDone... your bundled logs are located in {self.archive.path}\n")
            else:
                print(f"\n\tDone... the collected logs are located in {self.staging_dir}\n")
        elif self.debug_result is not None and self.debug_result.status is CollectionStatus.SUCCESS:
            print("\n\tDone... debug is enabled\n")
        elif self.debug_result is not None and self.debug_result.path is not None:
            print(f"\n\tDone... debug is configured in {self.debug_result.path} "
                  f"but the Docker daemon restart failed, restart it manually\n")
        else:
            print("\n\tDone... debug mode was not changed\n")


def _terminate(signum, frame):
    raise KeyboardInterrupt


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    previous = signal.signal(signal.SIGTERM, _terminate)
    try:
        return ModeDispatcher(args.mode).run()
    except KeyboardInterrupt:
        print("ERROR: Interrupted.. exiting...", file=sys.stderr)
        return 1
    finally:
        signal.signal(signal.SIGTERM, previous)
