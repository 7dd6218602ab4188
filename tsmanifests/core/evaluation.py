# tsmanifests/core/evaluation.py
"""
Evaluation of module files into their default-exported values.

The aggregator only sees the `Evaluator` protocol: given a path, return the
module's default export, `NO_EXPORT` when it has none, or raise
`EvaluationError`. `DenoEvaluator` fulfils it by importing each module once,
in its own `deno` subprocess, and decoding the export from JSON.
"""
import asyncio
import json
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Set, Union

import structlog

from tsmanifests.exceptions import EvaluationError

log = structlog.get_logger(__name__)

RESULT_MARKER = "__TSMANIFESTS_RESULT__"
INVOKE_COMMAND = b"invoke\n"

# results can be whole manifest sets on a single line.
_STREAM_LIMIT = 64 * 1024 * 1024


class _NoExport:
    def __repr__(self) -> str:
        return "NO_EXPORT"

    def __bool__(self) -> bool:
        return False


NO_EXPORT = _NoExport()


def is_absent_export(value: Any) -> bool:
    """True for the values JS treats as falsy: a module exporting one of them exports nothing."""
    if value is None or value is False:
        return True
    if isinstance(value, (int, float)):
        return value == 0 or value != value
    if isinstance(value, (str, bytes)):
        return not value
    return False


class Evaluator(Protocol):
    async def evaluate(self, path: Path) -> Any:
        ...


class DenoFunction:
    """Opaque stand-in for a JS function that cannot cross the process boundary."""

    def __init__(self, path: Path):
        self.path = path

    def __repr__(self) -> str:
        return f"DenoFunction({str(self.path)!r})"


# Runs as `deno run <args> loader.mjs <module url>`. The module may print on its
# own; each result is the JSON line following a marker line. A function default
# export is only called once the parent writes "invoke" and closes stdin.
_LOADER_SCRIPT = """\
const encoder = new TextEncoder();

async function emit(result) {
  const bytes = encoder.encode("\\n__MARKER__\\n" + JSON.stringify(result) + "\\n");
  let written = 0;
  while (written < bytes.length) {
    written += await Deno.stdout.write(bytes.subarray(written));
  }
}

const mod = await import(Deno.args[0]);
const value = mod.default;

if (!value) {
  await emit({ shape: "missing" });
} else if (typeof value !== "function") {
  await emit({ shape: "value", value });
} else {
  await emit({ shape: "function" });
  const command = await new Response(Deno.stdin.readable).text();
  if (command.trim() === "invoke") {
    const produced = await value();
    await emit(
      typeof produced === "function"
        ? { shape: "function" }
        : { shape: "value", value: produced ?? null },
    );
  }
}
""".replace("__MARKER__", RESULT_MARKER)


class DenoExport:
    """
    A function default export, still held by the deno process that imported it.

    Calling it returns a coroutine that tells that process to invoke the
    function with no arguments, then waits for the awaited result. It can be
    called once; the process exits afterwards.
    """

    def __init__(self, evaluator: "DenoEvaluator", path: Path, proc, stderr_task: asyncio.Future):
        self._evaluator = evaluator
        self._proc = proc
        self._stderr_task = stderr_task
        self._called = False
        self.path = path

    async def __call__(self) -> Any:
        if self._called:
            raise EvaluationError(self.path, "default export was already invoked")
        self._called = True
        evaluator, proc = self._evaluator, self._proc

        try:
            proc.stdin.write(INVOKE_COMMAND)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # deno is already gone; reading the result reports its exit status.
            pass
        proc.stdin.close()

        try:
            payload = await evaluator.await_result(proc, self.path, self._stderr_task)
        except BaseException:
            await evaluator.terminate(proc, self._stderr_task)
            raise
        await evaluator.finish(proc, self.path, self._stderr_task)

        if payload.get("shape") == "function":
            log.warning("deno_function_produced_function", path=str(self.path))
            return DenoFunction(self.path)
        if payload.get("shape") != "value":
            raise EvaluationError(self.path, f"unexpected result shape from deno: {payload.get('shape')!r}")
        return payload.get("value")

    async def aclose(self):
        # drops a function export that will never be called.
        if not self._called:
            self._called = True
            await self._evaluator.terminate(self._proc, self._stderr_task)

    def __repr__(self) -> str:
        return f"DenoExport({str(self.path)!r})"


class DenoEvaluator:
    # one `deno run <args> loader.mjs <module url>` process per module.
    def __init__(
        self,
        deno_path: str = "deno",
        deno_args: Sequence[str] = ("-A",),
        cwd: Optional[Path] = None,
        timeout: Optional[float] = None,
    ):
        self.deno_path = deno_path
        self.deno_args = list(deno_args)
        self.cwd = cwd
        self.timeout = timeout
        self._loader_dir: Optional[tempfile.TemporaryDirectory] = None
        self._live: Set[Any] = set()

    def loader_path(self) -> Path:
        if self._loader_dir is None:
            self._loader_dir = tempfile.TemporaryDirectory(prefix="tsmanifests-")
            (Path(self._loader_dir.name) / "loader.mjs").write_text(_LOADER_SCRIPT, encoding="utf-8")
        return Path(self._loader_dir.name) / "loader.mjs"

    def command_for(self, path: Path) -> List[str]:
        return [self.deno_path, "run", *self.deno_args, str(self.loader_path()), path.resolve().as_uri()]

    async def evaluate(self, path: Path) -> Any:
        proc = await self._spawn(path)
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        try:
            payload = await self.await_result(proc, path, stderr_task)
        except BaseException:
            await self.terminate(proc, stderr_task)
            raise

        shape = payload.get("shape")
        if shape == "function":
            return DenoExport(self, path, proc, stderr_task)
        await self.finish(proc, path, stderr_task)
        if shape == "missing":
            return NO_EXPORT
        if shape == "value":
            return payload.get("value")
        raise EvaluationError(path, f"unexpected result shape from deno: {shape!r}")

    async def _spawn(self, path: Path):
        cmd = self.command_for(path)
        log.debug("deno_subprocess_starting", path=str(path), cmd=cmd)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.cwd) if self.cwd else None,
                limit=_STREAM_LIMIT,
            )
        except OSError as e:
            raise EvaluationError(path, f"could not start deno ({self.deno_path}): {e}")
        self._live.add(proc)
        return proc

    async def await_result(self, proc, path: Path, stderr_task: asyncio.Future) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(self._read_result(proc, path, stderr_task), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise EvaluationError(path, f"deno did not finish within {self.timeout}s")

    async def _read_result(self, proc, path: Path, stderr_task: asyncio.Future) -> Dict[str, Any]:
        preamble: List[str] = []
        while True:
            line = await proc.stdout.readline()
            if not line:
                await proc.wait()
                self._relay(preamble)
                stderr_text = (await stderr_task).decode("utf-8", errors="replace")
                if proc.returncode != 0:
                    raise EvaluationError(path, f"deno exited with code {proc.returncode}: {stderr_text.strip()}")
                raise EvaluationError(path, "deno produced no result")
            text = line.decode("utf-8", errors="replace")
            if text.rstrip("\r\n") == RESULT_MARKER:
                break
            preamble.append(text)

        # the marker is preceded by its own newline, which is not module output.
        if preamble and preamble[-1] == "\n":
            preamble.pop()
        self._relay(preamble)

        result_line = await proc.stdout.readline()
        try:
            payload = json.loads(result_line)
        except json.JSONDecodeError as e:
            raise EvaluationError(path, f"could not decode deno output: {e}")
        if not isinstance(payload, dict):
            raise EvaluationError(path, "deno output is not a JSON object")
        return payload

    async def finish(self, proc, path: Path, stderr_task: asyncio.Future):
        """Lets deno exit, relaying whatever the module still prints."""
        if not proc.stdin.is_closing():
            proc.stdin.close()

        async def drain_and_wait() -> bytes:
            rest = await proc.stdout.read()
            await proc.wait()
            return rest

        try:
            rest = await asyncio.wait_for(drain_and_wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self.terminate(proc, stderr_task)
            raise EvaluationError(path, f"deno did not finish within {self.timeout}s")
        self._live.discard(proc)

        stderr_text = (await stderr_task).decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise EvaluationError(path, f"deno exited with code {proc.returncode}: {stderr_text.strip()}")
        self._relay([rest.decode("utf-8", errors="replace")])
        if stderr_text:
            # module diagnostics (console.error and friends) pass through untouched.
            sys.stderr.write(stderr_text)

    async def terminate(self, proc, stderr_task: asyncio.Future):
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        if not stderr_task.done():
            stderr_task.cancel()
        self._live.discard(proc)

    async def aclose(self):
        # kills processes left waiting on an uncalled function export, then drops the loader.
        for proc in list(self._live):
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        self._live.clear()
        if self._loader_dir is not None:
            self._loader_dir.cleanup()
            self._loader_dir = None

    @staticmethod
    def _relay(chunks: List[str]):
        # module stdout never reaches our stdout, which carries only the manifest.
        text = "".join(chunks)
        if text.strip():
            sys.stderr.write(text if text.endswith("\n") else text + "\n")


class MappingEvaluator:
    # in-memory evaluator for embedding and tests; unknown paths and falsy values have no export.
    def __init__(self, values: Mapping[Union[str, Path], Any]):
        self._values = {Path(k): v for k, v in values.items()}

    async def evaluate(self, path: Path) -> Any:
        value = self._values.get(Path(path), NO_EXPORT)
        return NO_EXPORT if is_absent_export(value) else value
