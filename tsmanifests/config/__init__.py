# tsmanifests/config/__init__.py
from .settings import ManifestConfig
from .loader import load_and_merge_configs, build_config

__all__ = ["ManifestConfig", "load_and_merge_configs", "build_config"]
