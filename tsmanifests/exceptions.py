from pathlib import Path
from typing import Union


class ManifestError(Exception):
    # base exception for all application-specific errors.
    pass

class ConfigError(ManifestError):
    # errors related to configuration.
    pass

class DiscoveryError(ManifestError):
    # errors during file discovery.
    pass

class EvaluationError(ManifestError):
    # a module's default export could not be obtained or its callable failed.
    def __init__(self, path: Union[str, Path], message: str):
        self.path = Path(path)
        self.message = message
        super().__init__(f"failed to evaluate {self.path}: {message}")

class OutputError(ManifestError):
    # errors during output operations.
    pass
