"""Process-isolated execution of user-authored step code.

User code never runs inside the worker process. Each call starts a
fresh interpreter (``python -I`` or ``node``), sends the code and its
bindings as JSON on stdin, and reads back one JSON envelope from the
last marked line of stdout. A wall-clock timeout kills the child.

Two Python modes exist:

- ``function``: the code is the body of a function whose parameters are
  the bindings, so ``return`` produces the result (transform steps).
- ``script``: the code runs at module level with the bindings as
  globals; whatever it prints is the result, and a top-level ``result``
  variable is printed as JSON after the code finishes (custom_code).
"""

import asyncio
import json
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)

ENVELOPE_MARKER = "__STEPFLOW_RESULT__"

_PYTHON_BOOTSTRAP = r'''
import ast
import contextlib
import io
import json
import sys

MARKER = "__STEPFLOW_RESULT__"


class _DotDict(dict):
    """Dict with attribute access so step code can write input.value."""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name, value):
        self[name] = value


def _dot(value):
    if isinstance(value, dict):
        return _DotDict({k: _dot(v) for k, v in value.items()})
    if isinstance(value, list):
        return [_dot(v) for v in value]
    return value


def _render(value):
    return value if isinstance(value, str) else json.dumps(value, default=str)


class _Console:
    def __init__(self):
        self.lines = []

    def log(self, *args):
        self.lines.append(" ".join(_render(a) for a in args))

    info = warn = error = debug = log


def _as_function(code, bindings):
    """Wrap the parsed body in ``def _step_main(<bindings>)`` without touching its text."""
    body = ast.parse(code, "<step>").body
    module = ast.parse("def _step_main(%s):\n    pass\n" % ", ".join(bindings))
    module.body[0].body = body or [ast.Pass()]
    return ast.fix_missing_locations(module)


def main():
    payload = json.loads(sys.stdin.read())
    code = payload["code"] or "pass"
    bindings = {k: _dot(v) for k, v in payload["bindings"].items()}
    console = _Console()
    captured = io.StringIO()
    envelope = {"ok": True, "value": None}

    try:
        with contextlib.redirect_stdout(captured):
            if payload["mode"] == "function":
                bindings["console"] = console
                scope = {"__name__": "__step__"}
                exec(compile(_as_function(code, bindings), "<step>", "exec"), scope)
                envelope["value"] = scope["_step_main"](**bindings)
            else:
                scope = {"__name__": "__step__", **bindings}
                exec(compile(code, "<step>", "exec"), scope)
                if "result" in scope:
                    print(json.dumps(scope["result"], default=str))
    except BaseException as exc:
        message = str(exc) or exc.__class__.__name__
        envelope = {"ok": False, "error": "%s: %s" % (exc.__class__.__name__, message)}

    envelope["logs"] = console.lines
    envelope["stdout"] = captured.getvalue()
    sys.stdout.write(MARKER + json.dumps(envelope, default=str) + "\n")
    sys.stdout.flush()


main()
'''

_NODE_BOOTSTRAP = r'''
const vm = require("vm");
const MARKER = "__STEPFLOW_RESULT__";
let raw = "";
process.stdin.setEncoding("utf8");
process.stdin.on("data", (chunk) => { raw += chunk; });
process.stdin.on("end", async () => {
  const payload = JSON.parse(raw);
  const logs = [];
  const render = (v) => (typeof v === "string" ? v : JSON.stringify(v));
  const log = (...args) => { logs.push(args.map(render).join(" ")); };
  const sandbox = Object.assign({}, payload.bindings, {
    console: { log, info: log, warn: log, error: log, debug: log },
  });
  let envelope;
  try {
    const script = new vm.Script("(async () => {\n" + payload.code + "\n})()");
    const value = await script.runInNewContext(sandbox, { timeout: payload.timeout_ms });
    envelope = { ok: true, value: value === undefined ? null : value };
  } catch (err) {
    envelope = { ok: false, error: (err && err.message) || String(err) };
  }
  envelope.logs = logs;
  process.stdout.write(MARKER + JSON.stringify(envelope) + "\n");
});
'''


@dataclass
class SandboxResult:
    """Outcome of one sandboxed run."""

    ok: bool
    value: Any = None
    error: Optional[str] = None
    stdout: str = ""
    stderr: str = ""
    logs: list[str] = field(default_factory=list)
    timed_out: bool = False
    exit_code: Optional[int] = None


def _child_env() -> dict[str, str]:
    env = {"PATH": os.environ.get("PATH", "")}
    for key in ("LANG", "LC_ALL", "SYSTEMROOT", "TMPDIR"):
        if key in os.environ:
            env[key] = os.environ[key]
    return env


def _parse_envelope(stdout_text: str) -> Optional[dict]:
    for line in reversed(stdout_text.splitlines()):
        if line.startswith(ENVELOPE_MARKER):
            try:
                return json.loads(line[len(ENVELOPE_MARKER):])
            except json.JSONDecodeError:
                return None
    return None


async def _run_child(
    argv: list[str],
    payload: dict[str, Any],
    timeout_ms: int,
) -> SandboxResult:
    stdin = json.dumps(payload, default=str).encode("utf-8")

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=_child_env(),
        )
    except FileNotFoundError:
        return SandboxResult(ok=False, error=f"Interpreter not found: {argv[0]}")

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input=stdin),
            timeout=timeout_ms / 1000,
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.warning("Sandboxed code killed after timeout", interpreter=argv[0], timeout_ms=timeout_ms)
        return SandboxResult(
            ok=False,
            error=f"Execution timed out after {timeout_ms}ms",
            timed_out=True,
        )

    stdout_text = stdout.decode("utf-8", errors="replace")
    stderr_text = stderr.decode("utf-8", errors="replace").strip()
    envelope = _parse_envelope(stdout_text)

    if envelope is None:
        return SandboxResult(
            ok=False,
            error=stderr_text or f"Process exited with code {process.returncode}",
            stderr=stderr_text,
            exit_code=process.returncode,
        )

    return SandboxResult(
        ok=bool(envelope.get("ok")),
        value=envelope.get("value"),
        error=envelope.get("error"),
        stdout=envelope.get("stdout", ""),
        stderr=stderr_text,
        logs=envelope.get("logs") or [],
        exit_code=process.returncode,
    )


async def run_python(
    code: str,
    bindings: dict[str, Any],
    timeout_ms: int,
    mode: str = "function",
) -> SandboxResult:
    """Run Python step code in a child interpreter (isolated mode)."""
    payload = {"code": code, "bindings": bindings, "mode": mode}
    return await _run_child([sys.executable, "-I", "-c", _PYTHON_BOOTSTRAP], payload, timeout_ms)


async def run_javascript(
    code: str,
    bindings: dict[str, Any],
    timeout_ms: int,
    node_binary: str = "node",
) -> SandboxResult:
    """Run JavaScript step code as an async function body in a node ``vm`` context."""
    payload = {"code": code, "bindings": bindings, "timeout_ms": timeout_ms}
    return await _run_child([node_binary, "-e", _NODE_BOOTSTRAP], payload, timeout_ms)
