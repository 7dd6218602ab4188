# tsmanifests/cli/interface.py
import sys
from pathlib import Path
from typing import Any, Dict

import click
from click_option_group import optgroup
import structlog

from tsmanifests import __version__ as app_version
from tsmanifests.config.loader import load_and_merge_configs, build_config
from tsmanifests.config.settings import (
    ManifestConfig, DEFAULT_MAX_DEPTH, DEFAULT_DENO_PATH, DEFAULT_CONCURRENCY, DEFAULT_INDENT,
)
from tsmanifests.core.aggregator import FileState
from tsmanifests.core.output import render_envelope, write_to_file, write_to_stdout
from tsmanifests.core.pipeline import ManifestGenerator
from tsmanifests.exceptions import ManifestError, EvaluationError
from tsmanifests.logging_setup import configure_logging

log = structlog.get_logger(__name__)

# cli parameter name -> ManifestConfig attribute, applied only when given on the command line.
CLI_PARAM_TO_CONFIG_ATTR = {
    "root": "root",
    "max_depth": "max_depth",
    "exclude_patterns": "exclude_patterns",
    "follow_symlinks": "follow_symlinks",
    "deno_path": "deno_path",
    "deno_args": "deno_args",
    "concurrency": "concurrency",
    "timeout": "timeout",
    "output_file": "output_file",
    "indent": "indent",
    "show_summary": "show_summary",
}

def _print_cli_summary_output(generator: ManifestGenerator):
    results = generator.file_results
    skipped = sum(1 for r in results if r.state is FileState.SKIPPED)
    click.secho("--- execution summary ---", fg="cyan", err=True)
    click.echo(f"Module files discovered: {len(generator.discovered_paths)}", err=True)
    click.echo(f"Files without a default export: {skipped}", err=True)
    click.echo(f"Entries emitted: {len(generator.items)}", err=True)
    for dir_path, error in generator.report.unreadable_dirs:
        click.echo(f"Unreadable directory: {dir_path} ({error})", err=True)

def _list_discovered_files(generator: ManifestGenerator):
    root = generator.config.root
    for path in generator.discover():
        click.echo(path.relative_to(root).as_posix())

def _run_manifest_generation_flow(config: ManifestConfig, list_files: bool):
    log.info("manifest_generation_orchestration_started", root=str(config.root))
    generator = ManifestGenerator(config)
    if list_files:
        _list_discovered_files(generator)
        return

    envelope = generator.generate()
    # rendering happens only after every module evaluated, so a failed run writes nothing.
    output_text = render_envelope(envelope, indent=config.indent)

    if config.output_file:
        write_to_file(config.output_file, output_text)
        click.echo(f"Info: Output written to: {config.output_file}", err=True)
    else:
        log.info("writing_final_output_to_stdout", items=len(envelope["items"]))
        write_to_stdout(output_text)

    if config.show_summary:
        _print_cli_summary_output(generator)


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@optgroup.group("Discovery Options", help="Control which module files are evaluated.")
@optgroup.option("-r", "--root", "root", type=click.Path(exists=True, file_okay=False, path_type=Path), default=None, help="Root directory to walk. Default: current directory.")
@optgroup.option("-d", "--max-depth", "max_depth", type=click.IntRange(min=0), default=DEFAULT_MAX_DEPTH, help=f"Maximum directory depth below the root. Default: {DEFAULT_MAX_DEPTH}.")
@optgroup.option("-e", "--exclude", "exclude_patterns", multiple=True, help="Extra gitignore-style pattern to exclude, relative to the root.")
@optgroup.option("-L", "--follow-symlinks", "follow_symlinks", is_flag=True, default=False, help="Follow symbolic links.")
@optgroup.option("--list-files", "list_files", is_flag=True, default=False, help="Print the discovered module files and exit without evaluating them.")
@optgroup.group("Evaluation Options", help="How modules are loaded and run.")
@optgroup.option("--deno", "deno_path", default=DEFAULT_DENO_PATH, help=f"Deno executable. Default: {DEFAULT_DENO_PATH}.")
@optgroup.option("--deno-arg", "deno_args", multiple=True, help="Argument passed to 'deno run' (repeatable). Default: -A.")
@optgroup.option("-j", "--concurrency", "concurrency", type=click.IntRange(min=1), default=DEFAULT_CONCURRENCY, help=f"Modules evaluated at once. Default: {DEFAULT_CONCURRENCY}.")
@optgroup.option("--timeout", "timeout", type=click.FloatRange(min=0, min_open=True), default=None, help="Seconds each deno subprocess may run. Default: no limit.")
@optgroup.group("Output Options", help="Where and how the manifest list is written.")
@optgroup.option("-o", "--output", "output_file", type=click.Path(dir_okay=False, writable=True, path_type=Path), default=None, help="Path to write the output to instead of stdout.")
@optgroup.option("--indent", "indent", type=click.IntRange(min=0), default=DEFAULT_INDENT, help=f"JSON indentation, 0 for compact output. Default: {DEFAULT_INDENT}.")
@optgroup.option("--summary", "show_summary", is_flag=True, default=False, help="Print file and entry counts on stderr.")
@optgroup.group("Application Behavior", help="Configuration profiles and logging.")
@optgroup.option("--config-profile", "active_config_profile_name", default=None, help="Load a profile from config file(s).")
@optgroup.option("--verbose", "-v", "verbosity_level", count=True, help="Verbosity: -v info, -vv debug.")
@optgroup.option("--force-json-logs", "force_json_logs_cli", is_flag=True, default=False, help="Force JSON logs.")
@click.version_option(version=app_version, package_name="tsmanifests", prog_name="tsmanifests", help="Show version and exit.")
@click.pass_context
def main_cli(ctx: click.Context, **cli_params: Any):
    """tsmanifests: evaluate the default export of every TypeScript module
    under a directory and print them as one JSON List."""

    log_level = "warning"
    if cli_params.get("verbosity_level", 0) == 1: log_level = "info"
    elif cli_params.get("verbosity_level", 0) >= 2: log_level = "debug"
    configure_logging(log_level_str=log_level, force_json_logs=cli_params.get("force_json_logs_cli", False))

    log.debug("cli_command_invoked", params=cli_params)

    try:
        overrides: Dict[str, Any] = {}
        for param_name, attr in CLI_PARAM_TO_CONFIG_ATTR.items():
            if ctx.get_parameter_source(param_name) == click.core.ParameterSource.COMMANDLINE:
                value = cli_params[param_name]
                overrides[attr] = list(value) if isinstance(value, tuple) else value

        base_dir = (cli_params.get("root") or Path.cwd()).resolve()
        raw_configs = load_and_merge_configs(base_dir)
        final_config = build_config(raw_configs, cli_params.get("active_config_profile_name"), overrides)

        _run_manifest_generation_flow(final_config, cli_params.get("list_files", False))

    except click.exceptions.Exit as e: raise e
    except EvaluationError as e:
        log.error("module_evaluation_failed", path=str(e.path), error=e.message)
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    except ManifestError as e:
        log.error("handled_application_error_in_cli", error_type=type(e).__name__, message=str(e))
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    except click.ClickException as e:
        log.error("click_exception_in_cli", error_type=type(e).__name__, message=str(e))
        e.show(); sys.exit(e.exit_code)
    except Exception as e:
        log.critical("unexpected_critical_error_in_cli", message=str(e), exc_info=True)
        click.secho(f"Unexpected critical error: {e}. Please report this.", fg="red", err=True)
        sys.exit(1)
