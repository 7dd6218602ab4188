# tsmanifests/core/output.py
import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, Dict, List
import structlog

from tsmanifests.core.evaluation import DenoFunction
from tsmanifests.exceptions import OutputError

log = structlog.get_logger(__name__)

SCHEMA_VERSION = "v1"
LIST_KIND = "List"

def build_envelope(items: List[Any]) -> Dict[str, Any]:
    # fixed wrapper; only items varies, and it is present even when empty.
    return {"schemaVersion": SCHEMA_VERSION, "kind": LIST_KIND, "items": list(items)}

def _encode_fallback(obj: Any) -> Any:
    # functions have no JSON form and encode as null, like JSON.stringify does inside arrays.
    if isinstance(obj, DenoFunction) or callable(obj):
        log.warning("function_entry_encoded_as_null", entry=repr(obj))
        return None
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=repr)
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serializable")

def render_envelope(envelope: Dict[str, Any], indent: int = 2) -> str:
    try:
        return json.dumps(envelope, indent=indent or None, default=_encode_fallback, ensure_ascii=False) + "\n"
    except (TypeError, ValueError) as e:
        raise OutputError(f"failed to serialize manifest list: {e}")

def write_to_stdout(text_content: str):
    # writes text to standard output in one piece.
    try:
        sys.stdout.write(text_content)
        sys.stdout.flush()
    except OSError as e:
        raise OutputError(f"failed to write to stdout: {e}")

def write_to_file(output_file_path: Path, text_content: str):
    # writes text content to the specified file path.
    log.info("writing_output_to_file", path=str(output_file_path))
    try:
        output_file_path.write_text(text_content, encoding="utf-8")
    except OSError as e:
        raise OutputError(f"failed to write to file '{output_file_path}': {e}")
