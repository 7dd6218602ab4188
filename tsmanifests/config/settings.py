from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import structlog

from tsmanifests.exceptions import ConfigError

log = structlog.get_logger(__name__)

DEFAULT_MAX_DEPTH = 10
DEFAULT_DENO_PATH = "deno"
DEFAULT_DENO_ARGS = ("-A",)
DEFAULT_CONCURRENCY = 1
DEFAULT_INDENT = 2

@dataclass
class ManifestConfig:
    # holds all configuration parameters for a single run.
    root: Optional[Path] = None
    max_depth: int = DEFAULT_MAX_DEPTH
    exclude_patterns: List[str] = field(default_factory=list)
    follow_symlinks: bool = False
    deno_path: str = DEFAULT_DENO_PATH
    deno_args: List[str] = field(default_factory=lambda: list(DEFAULT_DENO_ARGS))
    concurrency: int = DEFAULT_CONCURRENCY
    timeout: Optional[float] = None
    output_file: Optional[Path] = None
    indent: int = DEFAULT_INDENT
    show_summary: bool = False

    def __post_init__(self):
        # resolves the root and rejects values the walker and aggregator cannot honor.
        self.root = Path(self.root).resolve() if self.root else Path.cwd().resolve()
        if self.output_file is not None:
            self.output_file = Path(self.output_file)
        if self.max_depth < 0:
            raise ConfigError(f"max_depth must be >= 0, got {self.max_depth}")
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.indent < 0:
            raise ConfigError(f"indent must be >= 0, got {self.indent}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        log.debug("manifest_config_initialized", root=str(self.root), max_depth=self.max_depth)
