# tsmanifests/core/discovery/__init__.py
"""
Module file discovery for tsmanifests.

Walks a root directory to a depth limit and keeps only TypeScript modules
that pass the directory and file-name rules, plus any user exclude patterns.
"""
from .pattern_matching import should_include_dir, should_include_file
from .walker import DiscoveryReport, discover_paths, walk_files

__all__ = ["DiscoveryReport", "discover_paths", "walk_files", "should_include_dir", "should_include_file"]
