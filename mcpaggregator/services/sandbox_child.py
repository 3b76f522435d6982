# -*- coding: utf-8 -*-
"""Location: ./mcpaggregator/services/sandbox_child.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Restricted composition language and the sandbox child process.

Composition code is compiled by :func:`compile_composition`, which rejects at
compile time:

- identifiers and attributes starting with ``_``
- frame, code and generator internals (``gi_frame``, ``f_globals``, ...)
- ``str.format`` style attribute traversal
- class definitions and class patterns
- attribute assignment and deletion
- names such as ``open``, ``eval`` and ``exec``

Every remaining attribute read is rewritten into a call to
:func:`guarded_getattr`, which applies the same rules at run time to names
built from strings, refuses to reach into modules, frames and futures, and
never hands out a module object. Imports return :class:`ModuleView` objects,
which are read-only views of an allow-listed module's public, non-module
members; ``json`` exposes only ``dumps`` and ``loads``.

:class:`~mcpaggregator.services.sandbox_executor.InProcessRuntime` imports this
module. :class:`~mcpaggregator.services.sandbox_executor.SubprocessRuntime`
runs it as ``python -I -S -B sandbox_child.py <secret>`` in an empty
environment; before any composition code runs, the child calls
:func:`confine`, after which it can open no file, socket or pipe, write no
file, and start no process. Only the standard library is used here.

The child protocol is JSON lines, every message carrying the per-run secret:

- host -> child, first line: ``{"type": "start", "code", "paths"}``
- child -> host: ``{"type": "toolcall", "id", "path", "args"}``
- host -> child: ``{"type": "toolcall_response", "id", "ok", "result" | "error"}``
- child -> host, last line: ``{"type": "result", "ok", "result" | "error"..., "confined"}``

Protocol lines go to the real stdout; ``print`` inside composition code is
captured and returned as ``output``.
"""

# Standard
import ast
import asyncio
import builtins
import importlib
import io
import json
import math
import os
import sys
import threading
import traceback
import types
import uuid

SAFE_IMPORTS = frozenset({"json", "math", "re", "datetime", "time", "collections", "itertools", "statistics", "string", "random"})

# members that walk attributes from a format string
_HIDDEN_MEMBERS = {"string": frozenset({"Formatter"})}
_JSON_MEMBERS = frozenset({"dumps", "loads"})

_DENIED_PREFIXES = ("_", "gi_", "cr_", "ag_", "f_", "tb_", "co_")
_DENIED_ATTRIBUTES = frozenset({"format", "format_map", "vformat", "get_field", "with_traceback"})
_FUTURE_ATTRIBUTES = frozenset({"done", "result", "exception", "cancelled", "cancel"})
_FORBIDDEN_NAMES = frozenset({"open", "eval", "exec", "compile", "globals", "locals", "vars", "breakpoint"})
# imported lazily by the standard library; must be loaded before confine()
_PRELOAD = ("_strptime",)

_SAFE_BUILTIN_NAMES = (
    "abs all any bool bytes callable chr dict divmod enumerate filter float format frozenset "
    "int isinstance issubclass iter len list map max min next object ord pow range repr reversed round set slice sorted "
    "str sum tuple zip Exception ArithmeticError AssertionError AttributeError IndexError KeyError LookupError "
    "NameError NotImplementedError RuntimeError StopIteration TimeoutError TypeError ValueError ZeroDivisionError True False None"
).split()

INT_MIN = -(2**63)
INT_MAX = 2**64 - 1
GUARD_NAME = "_getattr_"


class SecurityError(Exception):
    """Composition code tried to leave the sandbox."""


class SerializationError(Exception):
    """A composition result cannot be represented as JSON."""


class ToolCallError(Exception):
    """A tool call forwarded to the host failed."""


class ModuleView:
    """Read-only view of a module's public, non-module members.

    Examples:
        >>> view = ModuleView(math)
        >>> view.floor(2.5)
        2
        >>> view.floor = None
        Traceback (most recent call last):
        ...
        AttributeError: sandbox module 'math' is read-only
    """

    __slots__ = ("_name", "_members")

    def __init__(self, module, only=None, hidden=frozenset()):
        members = {}
        for name, value in vars(module).items():
            if name.startswith("_") or name in hidden or isinstance(value, types.ModuleType):
                continue
            if only is not None and name not in only:
                continue
            members[name] = value
        object.__setattr__(self, "_name", module.__name__)
        object.__setattr__(self, "_members", types.MappingProxyType(members))

    def __getattr__(self, name):
        try:
            return self._members[name]
        except KeyError:
            raise AttributeError(f"module '{self._name}' has no attribute '{name}'") from None

    def __setattr__(self, name, value):
        raise AttributeError(f"sandbox module '{self._name}' is read-only")

    def __delattr__(self, name):
        raise AttributeError(f"sandbox module '{self._name}' is read-only")

    def __repr__(self):
        return f"<sandbox module '{self._name}'>"


def _build_views():
    for name in _PRELOAD:
        importlib.import_module(name)
    views = {}
    for name in sorted(SAFE_IMPORTS):
        module = importlib.import_module(name)
        hidden = _HIDDEN_MEMBERS.get(name) or frozenset()
        views[name] = ModuleView(module, only=_JSON_MEMBERS if name == "json" else None, hidden=hidden)
    return views


MODULE_VIEWS = _build_views()


def _denied_attribute(name):
    return name.startswith(_DENIED_PREFIXES) or name in _DENIED_ATTRIBUTES


def guarded_getattr(obj, name, *default):
    """``getattr`` for composition code.

    Examples:
        >>> guarded_getattr({"a": 1}, "get")("a")
        1
        >>> guarded_getattr(MODULE_VIEWS["random"], "_o" + "s")
        Traceback (most recent call last):
        ...
        mcpaggregator.services.sandbox_child.SecurityError: Access to attribute '_os' is not allowed
        >>> guarded_getattr(MODULE_VIEWS["json"], "codecs")
        Traceback (most recent call last):
        ...
        AttributeError: module 'json' has no attribute 'codecs'
    """
    if not isinstance(name, str):
        raise TypeError("attribute name must be a string")
    if _denied_attribute(name):
        raise SecurityError(f"Access to attribute '{name}' is not allowed")
    if isinstance(obj, (types.ModuleType, types.FrameType, types.CodeType, types.TracebackType)):
        raise SecurityError(f"Access to attributes of {type(obj).__name__} objects is not allowed")
    future_like = isinstance(obj, asyncio.Future) or (isinstance(obj, type) and issubclass(obj, asyncio.Future))
    if future_like and name not in _FUTURE_ATTRIBUTES:
        raise SecurityError(f"Access to attribute '{name}' of a tool call is not allowed")
    value = getattr(obj, name, *default)
    if isinstance(value, (types.ModuleType, types.FrameType, types.CodeType, asyncio.AbstractEventLoop)):
        raise SecurityError(f"Access to attribute '{name}' is not allowed")
    return value


def guarded_hasattr(obj, name):
    try:
        guarded_getattr(obj, name)
    except AttributeError:
        return False
    return True


def safe_import(name, globals=None, locals=None, fromlist=(), level=0):  # pylint: disable=redefined-builtin,unused-argument
    if level != 0 or name not in SAFE_IMPORTS:
        raise ImportError(f"Import of '{name}' is not allowed in sandbox")
    return MODULE_VIEWS[name]


async def gather(*aws, return_exceptions=False):
    """``asyncio.gather`` returning a plain list."""
    return list(await asyncio.gather(*aws, return_exceptions=return_exceptions))


def wrap_composition(code):
    """Wrap composition code as the body of ``async def __composition__()``.

    Examples:
        >>> print(wrap_composition("return 1"))
        async def __composition__():
            return 1
            pass
        <BLANKLINE>
    """
    lines = ["async def __composition__():"]
    lines.extend(f"    {line}" for line in code.splitlines())
    lines.append("    pass")
    return "\n".join(lines) + "\n"


def _bound_names(node):
    if isinstance(node, ast.Name):
        yield node.id
    elif isinstance(node, ast.arg):
        yield node.arg
    elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        yield node.name
    elif isinstance(node, ast.ExceptHandler) and node.name:
        yield node.name
    elif isinstance(node, ast.alias):
        yield node.name
        if node.asname:
            yield node.asname
    elif isinstance(node, (ast.Global, ast.Nonlocal)):
        yield from node.names
    elif isinstance(node, (ast.MatchAs, ast.MatchStar)) and node.name:
        yield node.name
    elif isinstance(node, ast.MatchMapping) and node.rest:
        yield node.rest


def _check_node(node):
    line = max(getattr(node, "lineno", 1) - 1, 1)
    if isinstance(node, ast.ClassDef):
        raise SecurityError(f"line {line}: class definitions are not allowed")
    if isinstance(node, ast.MatchClass):
        raise SecurityError(f"line {line}: class patterns are not allowed")
    if isinstance(node, ast.Attribute):
        if _denied_attribute(node.attr):
            raise SecurityError(f"line {line}: access to attribute '{node.attr}' is not allowed")
        if not isinstance(node.ctx, ast.Load):
            raise SecurityError(f"line {line}: assigning or deleting attributes is not allowed")
    for name in _bound_names(node):
        if name.startswith("_") and name != "_":
            raise SecurityError(f"line {line}: name '{name}' is not allowed")
        if isinstance(node, ast.Name) and name in _FORBIDDEN_NAMES:
            raise SecurityError(f"line {line}: '{name}' is not available in the sandbox")


class _AttributeGuard(ast.NodeTransformer):
    def visit_Attribute(self, node):  # pylint: disable=invalid-name
        self.generic_visit(node)
        call = ast.Call(func=ast.Name(id=GUARD_NAME, ctx=ast.Load()), args=[node.value, ast.Constant(node.attr)], keywords=[])
        return ast.copy_location(call, node)


def compile_composition(code, filename="<composition>"):
    """Validate composition code and compile it with guarded attribute access.

    Args:
        code: Body of the composition function.
        filename: Name used in tracebacks.

    Returns:
        Code object defining ``__composition__`` in the namespace it runs in.

    Raises:
        SyntaxError: If the code does not parse.
        SecurityError: If the code uses a forbidden construct.

    Examples:
        >>> _ = compile_composition("return tools.geo.locate({})")
        >>> compile_composition("import random\\nreturn random._os")
        Traceback (most recent call last):
        ...
        mcpaggregator.services.sandbox_child.SecurityError: line 2: access to attribute '_os' is not allowed
        >>> compile_composition('return "{0.x}".format(1)')
        Traceback (most recent call last):
        ...
        mcpaggregator.services.sandbox_child.SecurityError: line 1: access to attribute 'format' is not allowed
    """
    tree = ast.parse(wrap_composition(code), filename=filename, mode="exec")
    for statement in tree.body[0].body:
        for node in ast.walk(statement):
            _check_node(node)
    tree = ast.fix_missing_locations(_AttributeGuard().visit(tree))
    return compile(tree, filename, "exec")


def restricted_namespace(tools, call, print_function):
    """Globals for one composition run.

    Args:
        tools: Path-keyed tool namespace.
        call: ``call(path, args)`` helper.
        print_function: Replacement for ``print``.

    Returns:
        Namespace dict to ``exec`` :func:`compile_composition` output in.
    """
    safe_builtins = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}
    safe_builtins.update(print=print_function, __import__=safe_import, getattr=guarded_getattr, hasattr=guarded_hasattr)
    return {
        "__builtins__": safe_builtins,
        GUARD_NAME: guarded_getattr,
        "tools": tools,
        "call": call,
        "gather": gather,
        "json": MODULE_VIEWS["json"],
    }


def to_json_data(value):
    """JSON round trip of a composition result.

    Unknown objects become strings, non-finite floats become ``None`` and
    integers must fit in 64 bits.

    Raises:
        SerializationError: If the result cannot be represented.

    Examples:
        >>> to_json_data({"a": (1, float("nan")), 3: None})
        {'a': [1, None], '3': None}
        >>> to_json_data(2**70)
        Traceback (most recent call last):
        ...
        mcpaggregator.services.sandbox_child.SerializationError: Result is not JSON serializable: Integer exceeds 64-bit range
    """
    try:
        data = json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError, RecursionError) as e:
        raise SerializationError(f"Result is not JSON serializable: {e}") from e

    def _fix(item):
        if isinstance(item, bool):
            return item
        if isinstance(item, int) and not INT_MIN <= item <= INT_MAX:
            raise SerializationError("Result is not JSON serializable: Integer exceeds 64-bit range")
        if isinstance(item, float) and not math.isfinite(item):
            return None
        return item

    data = _fix(data)
    stack = [data]
    while stack:
        container = stack.pop()
        if isinstance(container, dict):
            keys = list(container)
        elif isinstance(container, list):
            keys = range(len(container))
        else:
            continue
        for key in keys:
            container[key] = _fix(container[key])
            stack.append(container[key])
    return data


def confine():
    """Forbid new file descriptors, file writes and child processes (POSIX).

    Existing descriptors keep working, so the tool bridge and the event loop
    are unaffected. Modules reachable from composition code are imported
    before this runs.

    Returns:
        True when the limits were applied.
    """
    if os.name != "posix":
        return False
    import resource  # pylint: disable=import-outside-toplevel

    resource.setrlimit(resource.RLIMIT_FSIZE, (0, 0))
    lowest_free = os.open(os.devnull, os.O_RDONLY)
    os.close(lowest_free)
    resource.setrlimit(resource.RLIMIT_NOFILE, (lowest_free, lowest_free))
    try:
        resource.setrlimit(resource.RLIMIT_NPROC, (0, 0))
    except (ValueError, OSError):
        pass  # not supported on this platform
    return True


class Bridge:
    """Child side of the JSON-lines tool bridge."""

    def __init__(self, secret, loop):
        self.secret = secret
        self.loop = loop
        self.pending = {}
        self.calls = set()
        self._write_lock = threading.Lock()

    def send(self, message):
        message["secret"] = self.secret
        line = json.dumps(message, ensure_ascii=False, default=str)
        with self._write_lock:
            sys.__stdout__.write(line + "\n")
            sys.__stdout__.flush()

    def dispatch(self, message):
        future = self.pending.pop(str(message.get("id") or ""), None)
        if future is None or future.done():
            return
        if message.get("ok"):
            future.set_result(message.get("result"))
        else:
            future.set_exception(ToolCallError(str(message.get("error") or "tool call failed")))

    def fail_all(self, reason):
        for future in self.pending.values():
            if not future.done():
                future.set_exception(ToolCallError(reason))
        self.pending.clear()

    async def _request(self, path, args):
        request_id = uuid.uuid4().hex
        future = self.loop.create_future()
        self.pending[request_id] = future
        self.send({"type": "toolcall", "id": request_id, "path": path, "args": args})
        return await future

    def call(self, path, args=None):
        """Start a tool call now and return the task awaiting its result."""
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise TypeError(f"Arguments for '{path}' must be a mapping, got {type(args).__name__}")
        task = self.loop.create_task(self._request(path, args))
        self.calls.add(task)
        return task


def _reader(bridge, first_line):
    """Read host messages on a daemon thread and hand them to the loop."""
    for raw in iter(sys.stdin.readline, ""):
        raw = raw.strip()
        if not raw:
            continue
        try:
            message = json.loads(raw)
        except ValueError:
            continue
        if not isinstance(message, dict) or message.get("secret") != bridge.secret:
            continue
        if message.get("type") == "start":
            bridge.loop.call_soon_threadsafe(first_line.set_result, message)
        elif message.get("type") == "toolcall_response":
            bridge.loop.call_soon_threadsafe(bridge.dispatch, message)
    try:
        bridge.loop.call_soon_threadsafe(bridge.fail_all, "host closed the tool bridge")
        bridge.loop.call_soon_threadsafe(_abandon, first_line)
    except RuntimeError:
        pass  # loop already closed


def _abandon(first_line):
    if not first_line.done():
        first_line.set_exception(EOFError("host closed stdin before sending code"))


class _ToolGroup:
    def __init__(self, tools, server):
        self._tools = tools
        self._server = server

    def __getattr__(self, item):
        return self._tools[f"{self._server}/{item}"]


class Tools:
    """``tools["server/tool"](args)`` or ``tools.server.tool(args)``."""

    def __init__(self, bridge, paths):
        self._bridge = bridge
        self._paths = frozenset(paths)

    def __getitem__(self, path):
        if path not in self._paths:
            raise LookupError(f"Unknown tool '{path}'")
        return lambda args=None: self._bridge.call(path, args)

    def __contains__(self, path):
        return path in self._paths

    def __iter__(self):
        return iter(sorted(self._paths))

    def __getattr__(self, server):
        if server.startswith("_"):
            raise AttributeError(server)
        return _ToolGroup(self, server)


async def run_composition(bridge, message):
    """Run the code of a ``start`` message and build the ``result`` message."""
    output = io.StringIO()

    def _print(*args, sep=" ", end="\n", file=None, flush=False):  # pylint: disable=unused-argument
        output.write(sep.join(str(a) for a in args) + end)

    tools = Tools(bridge, message.get("paths") or [])
    namespace = restricted_namespace(tools, lambda path, args=None: tools[path](args), _print)

    try:
        exec(compile_composition(str(message.get("code") or "")), namespace)  # noqa: S102
        result = await namespace["__composition__"]()
        if asyncio.isfuture(result) or asyncio.iscoroutine(result):
            result = await result
        if bridge.calls:
            await asyncio.gather(*bridge.calls, return_exceptions=True)
        result = to_json_data(result)
    except Exception as e:  # pylint: disable=broad-except
        for task in bridge.calls:
            task.cancel()
        return {"type": "result", "ok": False, "error": type(e).__name__, "message": str(e), "traceback": traceback.format_exc(), "output": output.getvalue()}
    return {"type": "result", "ok": True, "result": result, "output": output.getvalue()}


async def main(secret):
    loop = asyncio.get_running_loop()
    bridge = Bridge(secret, loop)
    first_line = loop.create_future()
    threading.Thread(target=_reader, args=(bridge, first_line), daemon=True).start()
    confined = confine()
    message = await first_line
    sys.stdout = io.StringIO()
    outcome = await run_composition(bridge, message)
    outcome["confined"] = confined
    bridge.send(outcome)


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1]))
