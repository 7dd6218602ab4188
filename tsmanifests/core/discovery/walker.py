# tsmanifests/core/discovery/walker.py
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Tuple
import pathspec
import structlog

from tsmanifests.config.settings import ManifestConfig
from tsmanifests.core.discovery.pattern_matching import (
    compile_glob_patterns_to_spec,
    is_path_excluded,
    should_include_dir,
    should_include_file,
)

log = structlog.get_logger(__name__)


@dataclass
class DiscoveryReport:
    # what a walk ran into besides the candidates themselves.
    unreadable_dirs: List[Tuple[Path, str]] = field(default_factory=list)
    excluded_count: int = 0


def walk_files(
    directory: Path,
    depth: int,
    root: Optional[Path] = None,
    exclude_spec: Optional[pathspec.PathSpec] = None,
    follow_symlinks: bool = False,
    report: Optional[DiscoveryReport] = None,
) -> Iterator[Path]:
    """
    Yields qualifying module files under `directory`, depth first.

    Entries of one directory are visited in name order so repeated walks of an
    unchanged tree agree. Sub-directories are entered with `depth - 1`; a
    negative depth yields nothing. A directory that cannot be listed is logged
    and recorded on `report`, and the walk carries on with its siblings.
    """
    if depth < 0:
        return
    root = root or directory

    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        log.error("directory_read_error", path=str(directory), error=str(e))
        if report is not None:
            report.unreadable_dirs.append((Path(directory), str(e)))
        return

    for entry in entries:
        path = Path(directory, entry.name)
        if entry.is_dir(follow_symlinks=follow_symlinks):
            if not should_include_dir(entry.name):
                continue
            if is_path_excluded(path, root, exclude_spec, is_dir=True):
                if report is not None:
                    report.excluded_count += 1
                continue
            yield from walk_files(path, depth - 1, root, exclude_spec, follow_symlinks, report)
        elif entry.is_file(follow_symlinks=follow_symlinks) and should_include_file(entry.name):
            if is_path_excluded(path, root, exclude_spec):
                if report is not None:
                    report.excluded_count += 1
                continue
            yield path


def discover_paths(config: ManifestConfig, report: Optional[DiscoveryReport] = None) -> Iterator[Path]:
    log.info("path_discovery_walker_started", root=str(config.root), max_depth=config.max_depth)
    exclude_spec = compile_glob_patterns_to_spec(config.exclude_patterns)
    yield from walk_files(
        config.root,
        config.max_depth,
        root=config.root,
        exclude_spec=exclude_spec,
        follow_symlinks=config.follow_symlinks,
        report=report,
    )
