"""
Staging directory management.
"""

import json
import os
import shutil
from typing import Iterable, List

from .config import MANIFEST_FILE
from .models import CollectionContext, CollectionResult


def create_tree(base_path: str, categories: Iterable[str]) -> None:
    """
    Create the staging root and one directory per category.

    An OSError creating base_path propagates: without a destination nothing
    else can run. Category directories are created the same way.
    """
    os.makedirs(base_path, exist_ok=True)
    for category in categories:
        os.makedirs(os.path.join(base_path, category), exist_ok=True)


def is_staging_tree(base_path: str, categories: Iterable[str]) -> bool:
    """
    True if base_path is missing, empty, or holds nothing but category
    directories and a manifest, i.e. it is safe to remove before a new run.
    """
    if not os.path.lexists(base_path):
        return True
    if os.path.islink(base_path) or not os.path.isdir(base_path):
        return False
    known = set(categories) | {MANIFEST_FILE}
    return all(entry in known for entry in os.listdir(base_path))


def destroy_tree(base_path: str) -> bool:
    """Best-effort recursive removal. Returns False (after a warning) on failure."""
    if not os.path.exists(base_path):
        return True
    try:
        shutil.rmtree(base_path)
    except OSError as e:
        print(f"Warning: Failed to remove staging directory {base_path}: {str(e)}")
        return False
    return True


def write_manifest(base_path: str, ctx: CollectionContext, categories: Iterable[str],
                   results: List[CollectionResult]) -> str:
    """Write manifest.json at the staging root describing the whole run."""
    manifest = {
        'nodeId': ctx.node_id,
        'version': ctx.version,
        'collectedAt': ctx.timestamp.isoformat(),
        'initSystem': ctx.init_variant.value,
        'packageManager': ctx.pkg_variant.value,
        'categories': list(categories),
        'results': [r.to_dict(base_path) for r in results],
    }
    path = os.path.join(base_path, MANIFEST_FILE)
    with open(path, 'w') as f:
        json.dump(manifest, f, indent=2, default=str)
    return path
