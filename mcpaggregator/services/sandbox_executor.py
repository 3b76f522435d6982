# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/sandbox_executor.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Sandboxed composition executor.

Every aggregated tool is exposed as a *binding* at ``"server/display_name"``:
an async callable taking one argument mapping and forwarding it to the owning
connection's ``call_tool(raw_name, args)``. Composition code is the body of an
async function and sees only:

- ``tools``: ``tools["server/tool"](args)``, or ``tools.server.tool(args)`` when
  both names are identifiers
- ``call(path, args)``: same as ``tools[path](args)``
- ``gather(*aws)``: ``asyncio.gather`` returning a list
- a read-only ``json`` with ``dumps`` and ``loads``, read-only views of the
  allow-listed modules and a restricted set of builtins, with ``print`` captured

Both runtimes compile the code with
:func:`~mcpaggregator.services.sandbox_child.compile_composition`: underscore
names and attributes, class definitions and attribute assignment are rejected
before anything runs, and every other attribute read goes through a guarded
``getattr``. Binding calls start as soon as they are made, and every call
issued during an execution has finished before ``execute`` returns. Results
must be JSON data with integers in the 64-bit range.

Two runtimes are available:

- :class:`SubprocessRuntime` (default): a fresh ``python -I -S -B`` process per
  execution with an empty environment, a temporary working directory and
  POSIX resource limits. Before running the code the child gives up the
  ability to open files or sockets, write files and start processes. Tool
  calls cross a JSON-lines bridge on stdin/stdout authenticated by a per-run
  secret.
- :class:`InProcessRuntime`: the guarded code runs inside the host event loop.
"""

# Standard
import abc
import asyncio
import contextlib
from dataclasses import dataclass, field
import io
import logging
import os
from pathlib import Path
import shutil
import sys
import tempfile
import time
import traceback
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
import uuid

# Third-Party
import orjson

# First-Party
from mcpaggregator.config import settings, Settings
from mcpaggregator.errors import SandboxExecutionError
from mcpaggregator.models import ServerInfo, ToolDescriptor
from mcpaggregator.services.sandbox_child import compile_composition, restricted_namespace, SecurityError

logger = logging.getLogger(__name__)

Binding = Callable[[Optional[Dict[str, Any]]], Awaitable[Any]]

CHILD_SCRIPT = Path(__file__).with_name("sandbox_child.py")

# largest JSON line accepted from the child
MAX_MESSAGE_BYTES = 16 * 1024 * 1024


@dataclass
class SandboxExecutionResult:
    """Outcome of one successful execution."""

    result: Any
    output: str = ""
    wall_time_ms: int = 0
    tool_calls: int = 0


@dataclass
class _ExecutionState:
    """Per-execution bookkeeping shared by the binding wrappers."""

    bindings: Dict[str, Binding]
    calls: Set[asyncio.Task] = field(default_factory=set)
    output: io.StringIO = field(default_factory=io.StringIO)

    def start_call(self, path: str, args: Optional[Dict[str, Any]]) -> asyncio.Task:
        binding = self.bindings.get(path)
        if binding is None:
            raise LookupError(f"Unknown tool '{path}'")
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise TypeError(f"Arguments for '{path}' must be a mapping, got {type(args).__name__}")
        task = asyncio.ensure_future(binding(args))
        self.calls.add(task)
        return task

    def print(self, *args: Any, sep: str = " ", end: str = "\n", file: Any = None, flush: bool = False) -> None:  # noqa: A003  # pylint: disable=unused-argument
        self.output.write(sep.join(str(a) for a in args) + end)

    async def drain(self) -> None:
        """Wait for every binding call started during the execution."""
        if not self.calls:
            return
        results = await asyncio.gather(*self.calls, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                logger.debug(f"Unobserved tool call failure during composition: {result!r}")

    def cancel(self) -> None:
        for task in self.calls:
            task.cancel()


def to_json_value(value: Any) -> Any:
    """Coerce ``value`` to plain JSON data.

    Args:
        value: Result of composition code.

    Returns:
        The JSON round trip of ``value``; unknown objects become strings.

    Raises:
        SandboxExecutionError: ``SerializationError`` for integers beyond 64 bits, circular or too deeply nested data.

    Examples:
        >>> to_json_value({"a": (1, 2), 3: None})
        {'a': [1, 2], '3': None}
        >>> to_json_value(None) is None
        True
        >>> try:
        ...     to_json_value(2**70)
        ... except SandboxExecutionError as e:
        ...     print(e.error_type)
        SerializationError
    """
    try:
        return orjson.loads(orjson.dumps(value, default=str, option=orjson.OPT_NON_STR_KEYS))
    except orjson.JSONEncodeError as e:
        raise SandboxExecutionError(f"Result is not JSON serializable: {e}", error_type="SerializationError") from e


class _ToolGroup:
    def __init__(self, tools: "ToolsNamespace", server: str) -> None:
        self._tools = tools
        self._server = server

    def __getattr__(self, item: str) -> Callable[..., asyncio.Task]:
        return self._tools[f"{self._server}/{item}"]


class ToolsNamespace:
    """Path-keyed view over the bindings of one execution."""

    def __init__(self, state: _ExecutionState) -> None:
        self._state = state

    def __getitem__(self, path: str) -> Callable[..., asyncio.Task]:
        if path not in self._state.bindings:
            raise LookupError(f"Unknown tool '{path}'")
        return lambda args=None: self._state.start_call(path, args)

    def __contains__(self, path: object) -> bool:
        return path in self._state.bindings

    def __iter__(self):
        return iter(sorted(self._state.bindings))

    def __getattr__(self, server: str) -> _ToolGroup:
        if server.startswith("_"):
            raise AttributeError(server)
        return _ToolGroup(self, server)


class SandboxRuntime(abc.ABC):
    """Runs composition code against a binding table."""

    name = "abstract"

    @abc.abstractmethod
    async def run(self, code: str, bindings: Dict[str, Binding], timeout: float) -> SandboxExecutionResult:
        """Execute ``code``.

        Args:
            code: Composition code.
            bindings: Tool bindings by path.
            timeout: Seconds allowed for the whole execution.

        Returns:
            SandboxExecutionResult: the JSON-ready result and captured output.

        Raises:
            SandboxExecutionError: If the code fails, times out or a binding call fails.
        """

    async def health_check(self) -> bool:
        """Return whether the runtime can execute code."""
        return True

    def validate(self, code: str) -> Any:
        """Compile ``code`` with the composition guard.

        Returns:
            The guarded code object.

        Raises:
            SandboxExecutionError: ``SecurityError`` or ``SyntaxError``.

        Examples:
            >>> _ = InProcessRuntime().validate("return 1")
            >>> try:
            ...     InProcessRuntime().validate("return ().__class__")
            ... except SandboxExecutionError as e:
            ...     print(e.error_type)
            SecurityError
        """
        try:
            return compile_composition(code)
        except (SecurityError, SyntaxError) as e:
            raise SandboxExecutionError(str(e), error_type=type(e).__name__) from e


class InProcessRuntime(SandboxRuntime):
    """Guarded composition code in the host event loop."""

    name = "inprocess"

    async def run(self, code: str, bindings: Dict[str, Binding], timeout: float) -> SandboxExecutionResult:
        compiled = self.validate(code)
        started = time.perf_counter()
        state = _ExecutionState(bindings=bindings)
        tools = ToolsNamespace(state)
        namespace = restricted_namespace(tools, lambda path, args=None: tools[path](args), state.print)

        async def _main() -> Any:
            result = await namespace["__composition__"]()
            if asyncio.isfuture(result) or asyncio.iscoroutine(result):
                result = await result
            await state.drain()
            return result

        try:
            exec(compiled, namespace)  # noqa: S102 - guarded attribute access and restricted builtins
            # a TimeoutError raised by a binding is a code failure, not an execution timeout
            task = asyncio.ensure_future(_main())
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                task.cancel()
                state.cancel()
                await asyncio.gather(task, return_exceptions=True)
                raise SandboxExecutionError(f"Execution timed out after {timeout}s", error_type="TimeoutError", output=state.output.getvalue())
            result = to_json_value(task.result())
        except SandboxExecutionError as e:
            e.output = e.output or state.output.getvalue()
            raise
        except Exception as e:
            state.cancel()
            raise SandboxExecutionError(str(e) or type(e).__name__, error_type=type(e).__name__, traceback=traceback.format_exc(), output=state.output.getvalue()) from e

        return SandboxExecutionResult(
            result=result,
            output=state.output.getvalue(),
            wall_time_ms=int((time.perf_counter() - started) * 1000),
            tool_calls=len(state.calls),
        )


def _limit_resources(memory_mb: int, cpu_seconds: int) -> Callable[[], None]:
    """Build a ``preexec_fn`` applying rlimits in the child (POSIX only)."""

    def _apply() -> None:
        # Standard
        import resource  # pylint: disable=import-outside-toplevel

        if memory_mb > 0:
            limit = memory_mb * 1024 * 1024
            resource.setrlimit(resource.RLIMIT_AS, (limit, limit))
        if cpu_seconds > 0:
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds))
        os.setsid()

    return _apply


class SubprocessRuntime(SandboxRuntime):
    """One isolated interpreter per execution, tools reached over a JSON-lines bridge."""

    name = "subprocess"

    def __init__(
        self,
        python_executable: Optional[str] = None,
        memory_limit_mb: Optional[int] = None,
        cpu_limit_seconds: Optional[int] = None,
        max_message_bytes: int = MAX_MESSAGE_BYTES,
    ):
        """Configure the runtime.

        Args:
            python_executable: Interpreter for the child, defaults to the host interpreter.
            memory_limit_mb: Address space limit, 0 disables.
            cpu_limit_seconds: CPU time limit, 0 disables.
            max_message_bytes: Largest JSON line read from the child, including the final result.
        """
        self._python_path = python_executable or settings.sandbox_python_executable or sys.executable or shutil.which("python3")
        self._memory_limit_mb = settings.sandbox_memory_limit_mb if memory_limit_mb is None else memory_limit_mb
        self._cpu_limit_seconds = settings.sandbox_cpu_limit_seconds if cpu_limit_seconds is None else cpu_limit_seconds
        self._max_message_bytes = max_message_bytes

    async def health_check(self) -> bool:
        return bool(self._python_path) and CHILD_SCRIPT.exists()

    async def run(self, code: str, bindings: Dict[str, Binding], timeout: float) -> SandboxExecutionResult:
        if not self._python_path:
            raise SandboxExecutionError("Python runtime is not available on this host", error_type="RuntimeUnavailable")
        self.validate(code)

        started = time.perf_counter()
        secret = uuid.uuid4().hex
        with tempfile.TemporaryDirectory(prefix="mcpagg-sandbox-") as workdir:
            proc = await asyncio.create_subprocess_exec(
                self._python_path,
                "-I",
                "-S",
                "-B",
                str(CHILD_SCRIPT),
                secret,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=workdir,
                env={},
                preexec_fn=_limit_resources(self._memory_limit_mb, self._cpu_limit_seconds) if os.name == "posix" else None,
                limit=self._max_message_bytes,
            )
            try:
                return await self._converse(proc, secret, code, bindings, timeout, started)
            finally:
                if proc.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        proc.kill()
                    await proc.wait()

    async def _converse(self, proc: asyncio.subprocess.Process, secret: str, code: str, bindings: Dict[str, Binding], timeout: float, started: float) -> SandboxExecutionResult:
        write_lock = asyncio.Lock()
        tool_tasks: Set[asyncio.Task] = set()
        call_count = 0
        final: Dict[str, Any] = {}

        async def _send(payload: Dict[str, Any]) -> None:
            payload["secret"] = secret
            line = orjson.dumps(payload, default=str, option=orjson.OPT_NON_STR_KEYS) + b"\n"
            async with write_lock:
                proc.stdin.write(line)
                await proc.stdin.drain()

        async def _handle_toolcall(msg: Dict[str, Any]) -> None:
            request_id = str(msg.get("id") or "")
            path = str(msg.get("path") or "")
            args = msg.get("args") if isinstance(msg.get("args"), dict) else {}
            binding = bindings.get(path)
            try:
                if binding is None:
                    raise LookupError(f"Unknown tool '{path}'")
                result = await binding(args)
                response = {"type": "toolcall_response", "id": request_id, "ok": True, "result": result}
            except Exception as exc:
                response = {"type": "toolcall_response", "id": request_id, "ok": False, "error": f"{type(exc).__name__}: {exc}"}
            with contextlib.suppress(ConnectionError, BrokenPipeError):
                await _send(response)

        async def _pump() -> None:
            nonlocal call_count
            while True:
                try:
                    raw = await proc.stdout.readline()
                except (ValueError, asyncio.LimitOverrunError) as e:
                    raise SandboxExecutionError(f"Sandbox message exceeded {self._max_message_bytes} bytes", error_type="ResultTooLarge") from e
                if not raw:
                    return
                try:
                    msg = orjson.loads(raw)
                except orjson.JSONDecodeError:
                    continue
                if not isinstance(msg, dict) or msg.get("secret") != secret:
                    continue
                if msg.get("type") == "toolcall":
                    call_count += 1
                    task = asyncio.create_task(_handle_toolcall(msg))
                    tool_tasks.add(task)
                    task.add_done_callback(tool_tasks.discard)
                elif msg.get("type") == "result":
                    final.update(msg)
                    return

        await _send({"type": "start", "code": code, "paths": sorted(bindings)})
        try:
            await asyncio.wait_for(_pump(), timeout=timeout)
        except asyncio.TimeoutError as e:
            for task in tool_tasks:
                task.cancel()
            raise SandboxExecutionError(f"Execution timed out after {timeout}s", error_type="TimeoutError") from e
        except SandboxExecutionError:
            for task in tool_tasks:
                task.cancel()
            raise
        finally:
            with contextlib.suppress(ConnectionError, BrokenPipeError, OSError):
                proc.stdin.close()

        if tool_tasks:
            await asyncio.gather(*tool_tasks, return_exceptions=True)

        if not final:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(proc.wait(), timeout=5)
            stderr = (await proc.stderr.read()).decode("utf-8", errors="replace").strip()
            raise SandboxExecutionError(f"Sandbox process exited with code {proc.returncode} without a result", error_type="SandboxCrashed", traceback=stderr[-4000:] or None)

        if final.get("confined") is False:
            logger.warning("Sandbox child could not apply file and network confinement on this platform")
        output = str(final.get("output") or "")
        if not final.get("ok"):
            raise SandboxExecutionError(str(final.get("message") or ""), error_type=str(final.get("error") or "Error"), traceback=final.get("traceback"), output=output)
        return SandboxExecutionResult(result=final.get("result"), output=output, wall_time_ms=int((time.perf_counter() - started) * 1000), tool_calls=call_count)


def build_runtime(kind: Optional[str] = None, cfg: Optional[Settings] = None) -> SandboxRuntime:
    """Create the runtime named by ``kind`` (defaults to ``cfg.sandbox_runtime``).

    Examples:
        >>> build_runtime("inprocess").name
        'inprocess'
        >>> build_runtime("subprocess").name
        'subprocess'
    """
    cfg = cfg or settings
    kind = kind or cfg.sandbox_runtime
    if kind == "inprocess":
        return InProcessRuntime()
    return SubprocessRuntime(
        python_executable=cfg.sandbox_python_executable,
        memory_limit_mb=cfg.sandbox_memory_limit_mb,
        cpu_limit_seconds=cfg.sandbox_cpu_limit_seconds,
    )


class SandboxExecutor:
    """Binding table plus the runtime that executes composition code."""

    def __init__(self, runtime: Optional[SandboxRuntime] = None, timeout: Optional[float] = None, tool_call_timeout: Optional[float] = None):
        """Create an uninitialized executor.

        Args:
            runtime: Execution runtime, defaults to :func:`build_runtime`.
            timeout: Seconds per execution, defaults to ``settings.sandbox_timeout_seconds``.
            tool_call_timeout: Seconds per binding call, defaults to ``settings.tool_call_timeout_seconds``.
        """
        self.runtime = runtime or build_runtime()
        self.timeout = timeout if timeout is not None else settings.sandbox_timeout_seconds
        self.tool_call_timeout = tool_call_timeout if tool_call_timeout is not None else settings.tool_call_timeout_seconds
        self._bindings: Optional[Dict[str, Binding]] = None

    @property
    def initialized(self) -> bool:
        """Whether ``initialize`` has run."""
        return self._bindings is not None

    def _make_binding(self, connection: Any, tool: ToolDescriptor) -> Binding:
        path = tool.path
        raw_name = tool.raw_name
        timeout = self.tool_call_timeout

        async def _binding(args: Optional[Dict[str, Any]] = None) -> Any:
            try:
                return await asyncio.wait_for(connection.call_tool(raw_name, args or {}), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise TimeoutError(f"Tool call '{path}' timed out after {timeout}s") from e

        _binding.__name__ = tool.display_name
        _binding.__qualname__ = path
        return _binding

    def initialize(self, servers: Dict[str, ServerInfo]) -> int:
        """Discard all bindings and rebuild them from ``servers``.

        Args:
            servers: Registered servers by name.

        Returns:
            Number of bindings.
        """
        bindings: Dict[str, Binding] = {}
        for info in servers.values():
            for tool in info.tools:
                bindings[tool.path] = self._make_binding(info.connection, tool)
        self._bindings = bindings
        logger.info(f"Sandbox ready with {len(bindings)} tool bindings ({self.runtime.name} runtime)")
        return len(bindings)

    def get_binding_paths(self) -> List[str]:
        """Sorted paths of the current bindings."""
        return sorted(self._bindings or {})

    async def run(self, code: str) -> SandboxExecutionResult:
        """Execute composition code and return the full outcome.

        Raises:
            SandboxExecutionError: Before ``initialize`` or when the code fails.
        """
        if self._bindings is None:
            raise SandboxExecutionError("Sandbox executor is not initialized", error_type="NotInitialized")
        bindings = dict(self._bindings)
        try:
            outcome = await self.runtime.run(code, bindings, self.timeout)
        except SandboxExecutionError:
            raise
        except Exception as e:
            logger.exception(f"Sandbox runtime {self.runtime.name} failed")
            raise SandboxExecutionError(str(e) or type(e).__name__, error_type="SandboxFailure") from e
        if outcome.output:
            logger.debug(f"Composition output: {outcome.output.rstrip()}")
        logger.info(f"Composition finished in {outcome.wall_time_ms}ms with {outcome.tool_calls} tool calls")
        return outcome

    async def execute(self, code: str) -> Any:
        """Execute composition code.

        Args:
            code: Body of an async function; ``return`` provides the result.

        Returns:
            The JSON-ready result.

        Raises:
            SandboxExecutionError: If the code fails, times out or a binding fails.
        """
        return (await self.run(code)).result

    async def execute_safe(self, code: str) -> Any:
        """Like :meth:`execute` but returns the ``SandboxExecutionError`` instead of raising it."""
        try:
            return await self.execute(code)
        except SandboxExecutionError as e:
            logger.warning(f"Composition failed: {e.error_type}: {e.message}")
            return e
