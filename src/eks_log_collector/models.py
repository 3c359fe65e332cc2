"""
Data model shared by the probe, the collectors, the archiver and the dispatcher.
"""

import os
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class InitVariant(Enum):
    SYSTEMD = 'systemd'
    OTHER = 'other'
    UNKNOWN = 'unknown'


class PkgVariant(Enum):
    RPM = 'rpm'
    DEB = 'deb'
    UNKNOWN = 'unknown'


class CollectionStatus(Enum):
    SUCCESS = 'success'
    PARTIAL_FAILURE = 'partial_failure'
    SKIPPED = 'skipped'
    UNSUPPORTED_PLATFORM = 'unsupported_platform'

    @property
    def is_skip(self) -> bool:
        return self in (CollectionStatus.SKIPPED, CollectionStatus.UNSUPPORTED_PLATFORM)


# =============================================================================
# FATAL ERRORS
# =============================================================================

class FatalError(Exception):
    """Ends the run with exit code 1."""
    pass


class InsufficientPrivilege(FatalError):
    """Raised when the tool is not running as root"""
    pass


class InsufficientDiskSpace(FatalError):
    """Raised when free space is below the collection threshold"""
    pass


class UnsupportedPlatform(FatalError):
    """Raised when runtime reconfiguration has no path for this platform"""
    pass


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class CommandResult:
    """Outcome of one bounded external call (command or HTTP request)."""
    target: str
    status: CollectionStatus
    returncode: Optional[int] = None
    output: str = ''
    reason: str = ''
    path: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is CollectionStatus.SUCCESS


@dataclass
class StepResult:
    name: str
    status: CollectionStatus
    reason: str = ''
    path: Optional[str] = None


@dataclass
class CollectionResult:
    """Outcome of one collector, aggregated from its sub-steps."""
    collector: str
    category: str
    status: CollectionStatus
    reason: str = ''
    files: List[str] = field(default_factory=list)
    steps: List[StepResult] = field(default_factory=list)

    @classmethod
    def from_steps(cls, collector: str, category: str, steps: List[StepResult]) -> 'CollectionResult':
        """
        Aggregate step outcomes.

        Any partial failure wins, then any success. A collector whose steps were
        all skipped is UNSUPPORTED_PLATFORM if one of them was unsupported,
        otherwise SKIPPED. No steps at all counts as SKIPPED.
        """
        statuses = {s.status for s in steps}
        if CollectionStatus.PARTIAL_FAILURE in statuses:
            status = CollectionStatus.PARTIAL_FAILURE
        elif CollectionStatus.SUCCESS in statuses:
            status = CollectionStatus.SUCCESS
        elif CollectionStatus.UNSUPPORTED_PLATFORM in statuses:
            status = CollectionStatus.UNSUPPORTED_PLATFORM
        else:
            status = CollectionStatus.SKIPPED

        reasons = [f'{s.name}: {s.reason}' for s in steps if s.status is not CollectionStatus.SUCCESS and s.reason]
        if not steps:
            reasons = ['nothing to collect']
        files = [s.path for s in steps if s.path and s.status is not CollectionStatus.SKIPPED]
        return cls(
            collector=collector,
            category=category,
            status=status,
            reason='; '.join(reasons),
            files=sorted(set(files)),
            steps=list(steps),
        )

    def to_dict(self, base_path: Optional[str] = None) -> Dict:
        """Plain dict for manifest.json; paths become relative to base_path when given."""
        def rel(path):
            if path and base_path:
                return os.path.relpath(path, base_path)
            return path

        d = asdict(self)
        d['status'] = self.status.value
        d['files'] = [rel(p) for p in self.files]
        d['steps'] = [{**asdict(s), 'status': s.status.value, 'path': rel(s.path)} for s in self.steps]
        return d


# =============================================================================
# CONTEXT / ARTIFACT
# =============================================================================

@dataclass(frozen=True)
class CollectionContext:
    """Read-only facts about the run, built once and handed to every collector."""
    node_id: str
    staging_dir: str
    init_variant: InitVariant
    pkg_variant: PkgVariant
    version: str
    timestamp: datetime
    host_root: str = '/'

    def host_path(self, path: str) -> str:
        """Map an absolute host path (e.g. /var/log) under host_root."""
        return os.path.join(self.host_root, path.lstrip('/'))

    def category_dir(self, category: str) -> str:
        return os.path.join(self.staging_dir, category)


@dataclass(frozen=True)
class Archive:
    path: str
    size: int
    created_at: datetime
    s3_uri: Optional[str] = None
