# tsmanifests/config/loader.py
"""
Handles loading and merging of configuration from TOML files, and layering
profiles and command-line overrides on top to build a ManifestConfig.
"""
import toml
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import fields as dataclass_fields
import structlog

from tsmanifests.exceptions import ConfigError

from .settings import ManifestConfig

log = structlog.get_logger(__name__)

PROJECT_CONFIG_FILENAMES = [".tsmanifests.toml", "tsmanifests.toml", "pyproject.toml"]
USER_CONFIG_DIR = Path.home() / ".config" / "tsmanifests"
USER_CONFIG_FILE = USER_CONFIG_DIR / "config.toml"

# toml key -> (ManifestConfig attribute, accepted python types)
CONFIG_KEY_TO_ATTR_MAP: Dict[str, tuple] = {
    "max_depth": ("max_depth", (int,)),
    "exclude_patterns": ("exclude_patterns", (list,)),
    "follow_symlinks": ("follow_symlinks", (bool,)),
    "deno_path": ("deno_path", (str,)),
    "deno_args": ("deno_args", (list,)),
    "concurrency": ("concurrency", (int,)),
    "timeout": ("timeout", (int, float)),
    "output_file": ("output_file", (str,)),
    "indent": ("indent", (int,)),
    "summary": ("show_summary", (bool,)),
}

def _load_toml_file_data(file_path: Path) -> Dict[str, Any]:
    if not file_path.is_file(): return {}
    log.debug("loading_toml_config_file", path=str(file_path))
    try:
        data = toml.load(file_path)
    except (toml.TomlDecodeError, OSError) as e:
        raise ConfigError(f"could not read config file {file_path}: {e}")
    return data.get("tool", {}).get("tsmanifests", {}) if file_path.name == "pyproject.toml" else data

def load_and_merge_configs(base_dir: Optional[Path] = None) -> Dict[str, Any]:
    # user-global settings first, then the first project config found in base_dir.
    base_dir = base_dir or Path.cwd()
    merged_toml_data: Dict[str, Any] = {}
    if USER_CONFIG_FILE.is_file():
        log.info("loading_user_global_config", path=str(USER_CONFIG_FILE))
        merged_toml_data.update(_load_toml_file_data(USER_CONFIG_FILE))

    for filename in PROJECT_CONFIG_FILENAMES:
        candidate = base_dir / filename
        if not candidate.is_file():
            continue
        project_settings = _load_toml_file_data(candidate)
        if not project_settings:
            continue
        log.info("loading_project_local_config", path=str(candidate))
        user_profiles = merged_toml_data.get("profiles", {})
        project_profiles = project_settings.pop("profiles", {})
        if isinstance(user_profiles, dict) and isinstance(project_profiles, dict):
            user_profiles.update(project_profiles)
            merged_toml_data["profiles"] = user_profiles
        merged_toml_data.update(project_settings)
        break
    if not merged_toml_data: log.debug("no_configuration_files_loaded")
    return merged_toml_data

def _apply_toml_section(options: Dict[str, Any], section: Dict[str, Any], source: str):
    for toml_key, (attr, accepted_types) in CONFIG_KEY_TO_ATTR_MAP.items():
        if toml_key not in section:
            continue
        value = section[toml_key]
        # bool is an int subclass, so keep "max_depth = true" from slipping through.
        if not isinstance(value, accepted_types) or (isinstance(value, bool) and bool not in accepted_types):
            raise ConfigError(f"invalid value for '{toml_key}' in {source}: {value!r}")
        if attr in ("exclude_patterns", "deno_args"):
            if not all(isinstance(v, str) for v in value):
                raise ConfigError(f"'{toml_key}' in {source} must be a list of strings")
            value = list(value)
        options[attr] = value

def build_config(
    raw_configs: Dict[str, Any],
    profile_name: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ManifestConfig:
    # layers: dataclass defaults < config files < selected profile < explicit overrides.
    options: Dict[str, Any] = {}
    _apply_toml_section(options, raw_configs, "config file")

    if profile_name:
        profile_values = raw_configs.get("profiles", {}).get(profile_name, {})
        if profile_values:
            log.info("applying_profile_settings", profile=profile_name)
            _apply_toml_section(options, profile_values, f"profile '{profile_name}'")
        else:
            log.warning("profile_not_found_in_config_files", profile_name=profile_name)

    valid_fields = {f.name for f in dataclass_fields(ManifestConfig) if f.init}
    for attr, value in (overrides or {}).items():
        if attr in valid_fields:
            options[attr] = value

    if isinstance(options.get("output_file"), str):
        options["output_file"] = Path(options["output_file"]) if options["output_file"] else None
    return ManifestConfig(**options)
