# tsmanifests/core/discovery/pattern_matching.py
import re
from pathlib import Path
from typing import Optional, List
import pathspec
import structlog

from tsmanifests.exceptions import DiscoveryError

log = structlog.get_logger(__name__)

# directories starting with "." or "_", and node_modules, are pruned with everything beneath them.
DIR_DENY_PATTERN = re.compile(r"^[._]|^node_modules$", re.IGNORECASE)

# only .ts/.mts modules not starting with "." or "_", minus declarations and tests.
FILE_ALLOW_PATTERN = re.compile(r"^(?![._]).*\.m?ts$", re.IGNORECASE)
FILE_DENY_PATTERN = re.compile(r"(?:\.d\.m?ts|_test\.m?ts)$", re.IGNORECASE)

def should_include_dir(name: str) -> bool:
    return DIR_DENY_PATTERN.search(name) is None

def should_include_file(name: str) -> bool:
    return FILE_ALLOW_PATTERN.search(name) is not None and FILE_DENY_PATTERN.search(name) is None

def compile_glob_patterns_to_spec(glob_patterns: List[str]) -> Optional[pathspec.PathSpec]:
    # compiles a list of gitignore-style patterns into a pathspec object for matching.
    if not glob_patterns:
        return None
    try:
        return pathspec.PathSpec.from_lines("gitwildmatch", glob_patterns)
    except Exception as e:
        raise DiscoveryError(f"error compiling exclude patterns {glob_patterns}: {e}")

def is_path_excluded(
    path: Path, root: Path, exclude_spec: Optional[pathspec.PathSpec], is_dir: bool = False
) -> bool:
    # matches the path relative to the walk root against user exclude patterns.
    if exclude_spec is None:
        return False
    try:
        rel_path = path.relative_to(root)
    except ValueError:
        return False
    # trailing slash lets directory-only patterns such as "vendor/" match.
    path_str = rel_path.as_posix() + ("/" if is_dir else "")
    if exclude_spec.match_file(path_str):
        log.debug("path_excluded_by_pattern", path=path_str)
        return True
    return False
