# tsmanifests/core/pipeline.py
import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.console import Console as RichConsole
import structlog
import logging as stdlib_logging

from tsmanifests.config.settings import ManifestConfig
from tsmanifests.core.aggregator import Aggregator, FileResult
from tsmanifests.core.discovery import DiscoveryReport, discover_paths
from tsmanifests.core.evaluation import DenoEvaluator, Evaluator
from tsmanifests.core.output import build_envelope


log = structlog.get_logger(__name__)


class ManifestGenerator:
    # orchestrates discovery, then aggregation, for a single run.
    def __init__(self, config: ManifestConfig, evaluator: Optional[Evaluator] = None):
        self.config: ManifestConfig = config
        self.evaluator: Evaluator = evaluator or DenoEvaluator(
            deno_path=config.deno_path,
            deno_args=config.deno_args,
            cwd=config.root,
            timeout=config.timeout,
        )
        self.log = structlog.get_logger(f"{__name__}.{self.__class__.__name__}")
        self.report = DiscoveryReport()
        self.discovered_paths: List[Path] = []
        self.items: List[Any] = []
        self.file_results: List[FileResult] = []

    def discover(self) -> List[Path]:
        self.report = DiscoveryReport()
        self.discovered_paths = list(discover_paths(self.config, self.report))
        self.log.info(
            "paths_discovered",
            count=len(self.discovered_paths),
            unreadable_dirs=len(self.report.unreadable_dirs),
            excluded=self.report.excluded_count,
        )
        if not self.discovered_paths:
            self.log.warning("no_matching_files_found", root=str(self.config.root))
        return self.discovered_paths

    async def _aggregate(self, aggregator: Aggregator, paths: List[Path], on_file_done) -> List[Any]:
        try:
            return await aggregator.aggregate(paths, on_file_done=on_file_done)
        finally:
            # evaluators holding subprocesses release them on the loop that started them.
            aclose = getattr(self.evaluator, "aclose", None)
            if aclose is not None:
                await aclose()

    def generate(self) -> Dict[str, Any]:
        # runs the full pipeline and returns the envelope; evaluation errors propagate.
        app_log_level = stdlib_logging.getLogger("tsmanifests").getEffectiveLevel()
        progress_disabled = app_log_level > stdlib_logging.INFO or not sys.stderr.isatty()
        stderr_console = RichConsole(file=sys.stderr)

        with Progress(
            SpinnerColumn(), TextColumn("[bold blue]{task.description}"), BarColumn(),
            transient=True, disable=progress_disabled, console=stderr_console
        ) as progress:

            discover_task = progress.add_task("discovering module files...", total=None)
            paths = self.discover()
            progress.update(discover_task, completed=True, description=f"discovered {len(paths)} module files.")

            aggregator = Aggregator(self.evaluator, concurrency=self.config.concurrency)
            if paths:
                evaluate_task = progress.add_task("evaluating modules...", total=len(paths))

                def on_file_done(result: FileResult):
                    progress.update(evaluate_task, advance=1, description=f"evaluated {result.path.name}")

                try:
                    self.items = asyncio.run(self._aggregate(aggregator, paths, on_file_done))
                finally:
                    self.file_results = aggregator.results
            else:
                self.items = []

        if paths and not self.items:
            self.log.warning("no_entries_produced", files=len(paths))
        return build_envelope(self.items)
