# -*- coding: utf-8 -*-
"""Location: ./tests/unit/mcpaggregator/services/test_sandbox_executor.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tests for the sandboxed composition executor and both runtimes.
"""

# Standard
import asyncio
import os
import subprocess
import sys
from unittest.mock import AsyncMock, MagicMock

# Third-Party
import pytest

# First-Party
from mcpaggregator.errors import SandboxExecutionError
from mcpaggregator.models import ServerInfo, ToolDescriptor
from mcpaggregator.services.sandbox_child import compile_composition, SecurityError
from mcpaggregator.services.sandbox_executor import build_runtime, CHILD_SCRIPT, InProcessRuntime, SandboxExecutor, SubprocessRuntime


def _call_result(payload):
    return {"content": [{"type": "text", "text": str(payload)}], "structuredContent": payload, "isError": False}


@pytest.fixture
def geo_connection():
    async def call_tool(name, args):
        if name == "get-location":
            return _call_result({"lat": 40.7, "lon": -74.0, "city": args["city"]})
        raise RuntimeError(f"unexpected tool {name}")

    connection = MagicMock()
    connection.call_tool = AsyncMock(side_effect=call_tool)
    return connection


@pytest.fixture
def weather_connection():
    async def call_tool(name, args):
        if name == "get-forecast":
            return _call_result({"temp": 21, "at": [args["latitude"], args["longitude"]]})
        if name == "broken":
            raise RuntimeError("upstream exploded")
        if name == "slow":
            await asyncio.sleep(10)
        return _call_result({})

    connection = MagicMock()
    connection.call_tool = AsyncMock(side_effect=call_tool)
    return connection


@pytest.fixture
def servers(geo_connection, weather_connection):
    return {
        "geo": ServerInfo("geo", geo_connection, [ToolDescriptor(server_name="geo", raw_name="get-location")]),
        "weather": ServerInfo(
            "weather",
            weather_connection,
            [
                ToolDescriptor(server_name="weather", raw_name="get-forecast"),
                ToolDescriptor(server_name="weather", raw_name="broken"),
                ToolDescriptor(server_name="weather", raw_name="slow"),
            ],
        ),
    }


@pytest.fixture
def executor(servers):
    sandbox = SandboxExecutor(runtime=InProcessRuntime(), timeout=2, tool_call_timeout=0.2)
    sandbox.initialize(servers)
    return sandbox


SEQUENTIAL = """
location = await tools["geo/get_location"]({"city": "New York"})
coords = location["structuredContent"]
weather = await tools["weather/get_forecast"]({"latitude": coords["lat"], "longitude": coords["lon"]})
return {"city": coords["city"], "temp": weather["structuredContent"]["temp"]}
"""


class TestSandboxExecutor:
    @pytest.mark.asyncio
    async def test_execute_before_initialize_fails(self):
        sandbox = SandboxExecutor(runtime=InProcessRuntime(), timeout=1)

        with pytest.raises(SandboxExecutionError) as exc_info:
            await sandbox.execute("return 1")

        assert exc_info.value.error_type == "NotInitialized"

    def test_binding_paths_use_display_names(self, executor):
        assert executor.get_binding_paths() == ["geo/get_location", "weather/broken", "weather/get_forecast", "weather/slow"]

    @pytest.mark.asyncio
    async def test_immediate_value(self, executor):
        assert await executor.execute("return 1 + 1") == 2

    @pytest.mark.asyncio
    async def test_sequential_composition(self, executor, geo_connection, weather_connection):
        result = await executor.execute(SEQUENTIAL)

        assert result == {"city": "New York", "temp": 21}
        geo_connection.call_tool.assert_awaited_once_with("get-location", {"city": "New York"})
        weather_connection.call_tool.assert_awaited_once_with("get-forecast", {"latitude": 40.7, "longitude": -74.0})

    @pytest.mark.asyncio
    async def test_parallel_calls_with_gather(self, executor):
        code = """
a, b = await gather(tools["geo/get_location"]({"city": "A"}), tools.geo.get_location({"city": "B"}))
return [a["structuredContent"]["city"], b["structuredContent"]["city"]]
"""
        assert await executor.execute(code) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_unawaited_calls_finish_before_return(self, executor, geo_connection):
        await executor.execute('call("geo/get_location", {"city": "X"})\nreturn "started"')

        geo_connection.call_tool.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_returned_awaitable_is_resolved(self, executor):
        result = await executor.execute('return tools["geo/get_location"]({"city": "Paris"})')

        assert result["structuredContent"]["city"] == "Paris"

    @pytest.mark.asyncio
    async def test_thrown_error_is_structured(self, executor):
        outcome = await executor.execute_safe('print("before")\nraise ValueError("bad input")')

        assert isinstance(outcome, SandboxExecutionError)
        payload = outcome.to_dict()
        assert payload["error"] == "ValueError"
        assert payload["message"] == "bad input"
        assert payload["output"] == "before\n"
        assert "traceback" in payload

    @pytest.mark.asyncio
    async def test_binding_failure_is_structured(self, executor):
        outcome = await executor.execute_safe('return await tools["weather/broken"]({})')

        assert outcome.error_type == "RuntimeError"
        assert "upstream exploded" in outcome.message

    @pytest.mark.asyncio
    async def test_tool_call_timeout(self, executor):
        outcome = await executor.execute_safe('return await tools["weather/slow"]({})')

        assert outcome.error_type == "TimeoutError"
        assert "weather/slow" in outcome.message

    @pytest.mark.asyncio
    async def test_execution_timeout(self, servers):
        sandbox = SandboxExecutor(runtime=InProcessRuntime(), timeout=0.1, tool_call_timeout=5)
        sandbox.initialize(servers)

        outcome = await sandbox.execute_safe('return await tools["weather/slow"]({})')

        assert outcome.error_type == "TimeoutError"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, executor):
        outcome = await executor.execute_safe('return await tools["weather/unknown"]({})')

        assert outcome.error_type == "LookupError"

    @pytest.mark.asyncio
    async def test_dangerous_code_is_rejected(self, executor):
        outcome = await executor.execute_safe('return open("/etc/passwd").read()')

        assert outcome.error_type == "SecurityError"

    @pytest.mark.asyncio
    async def test_disallowed_import(self, executor):
        outcome = await executor.execute_safe("import os\nreturn os.getcwd()")

        assert outcome.error_type == "ImportError"

    @pytest.mark.asyncio
    async def test_allowed_import(self, executor):
        assert await executor.execute("import math\nreturn math.floor(2.7)") == 2

    @pytest.mark.asyncio
    async def test_no_state_between_executions(self, executor):
        await executor.execute("x = 1\nreturn x")

        outcome = await executor.execute_safe("return x")

        assert outcome.error_type == "NameError"

    @pytest.mark.asyncio
    async def test_reinitialize_replaces_bindings(self, executor, servers):
        executor.initialize({"geo": servers["geo"]})

        assert executor.get_binding_paths() == ["geo/get_location"]
        outcome = await executor.execute_safe('return await tools["weather/get_forecast"]({})')
        assert outcome.error_type == "LookupError"

    @pytest.mark.asyncio
    async def test_results_are_json_ready(self, executor):
        assert await executor.execute("return {1: (1, 2)}") == {"1": [1, 2]}


@pytest.mark.skipif(os.name != "posix", reason="resource limits and process groups are POSIX only")
class TestSubprocessRuntime:
    @pytest.fixture
    def subprocess_executor(self, servers):
        sandbox = SandboxExecutor(runtime=SubprocessRuntime(python_executable=sys.executable, memory_limit_mb=0, cpu_limit_seconds=10), timeout=10, tool_call_timeout=1)
        sandbox.initialize(servers)
        return sandbox

    @pytest.mark.asyncio
    async def test_round_trip_through_tool_bridge(self, subprocess_executor, geo_connection):
        outcome = await subprocess_executor.run(SEQUENTIAL + "\n")

        assert outcome.result == {"city": "New York", "temp": 21}
        assert outcome.tool_calls == 2
        geo_connection.call_tool.assert_awaited_once_with("get-location", {"city": "New York"})

    @pytest.mark.asyncio
    async def test_print_is_captured(self, subprocess_executor):
        outcome = await subprocess_executor.run('print("hello")\nreturn 3')

        assert outcome.result == 3
        assert outcome.output == "hello\n"

    @pytest.mark.asyncio
    async def test_binding_failure_surfaces_in_child(self, subprocess_executor):
        outcome = await subprocess_executor.execute_safe('return await tools["weather/broken"]({})')

        assert outcome.error_type == "ToolCallError"
        assert "upstream exploded" in outcome.message

    @pytest.mark.asyncio
    async def test_os_module_is_unavailable(self, subprocess_executor):
        outcome = await subprocess_executor.execute_safe("import os\nreturn os.environ")

        assert outcome.error_type == "ImportError"

    @pytest.mark.asyncio
    async def test_timeout_kills_child(self, servers):
        sandbox = SandboxExecutor(runtime=SubprocessRuntime(python_executable=sys.executable, memory_limit_mb=0, cpu_limit_seconds=10), timeout=0.5)
        sandbox.initialize(servers)

        outcome = await sandbox.execute_safe("while True:\n    pass")

        assert outcome.error_type == "TimeoutError"

    @pytest.mark.asyncio
    async def test_oversized_result_is_structured(self, servers):
        sandbox = SandboxExecutor(runtime=SubprocessRuntime(python_executable=sys.executable, memory_limit_mb=0, cpu_limit_seconds=10, max_message_bytes=4096), timeout=10)
        sandbox.initialize(servers)

        outcome = await sandbox.execute_safe('return "x" * 10000')

        assert isinstance(outcome, SandboxExecutionError)
        assert outcome.error_type == "ResultTooLarge"

    def test_confined_child_cannot_open_files_or_sockets(self):
        script = (
            "import runpy, socket, sys\n"
            "child = runpy.run_path(sys.argv[1])\n"
            "assert child['confine']()\n"
            "for attempt in (lambda: open(sys.argv[1]), lambda: socket.socket(), lambda: open('written.txt', 'w')):\n"
            "    try:\n"
            "        attempt()\n"
            "    except OSError:\n"
            "        continue\n"
            "    raise SystemExit('escaped confinement')\n"
            "print('confined')\n"
        )

        completed = subprocess.run([sys.executable, "-I", "-S", "-B", "-c", script, str(CHILD_SCRIPT)], capture_output=True, text=True, timeout=30, check=False)

        assert completed.returncode == 0, completed.stderr
        assert completed.stdout.strip() == "confined"


def _runtime_params():
    posix_only = pytest.mark.skipif(os.name != "posix", reason="subprocess runtime needs POSIX resource limits")
    return ["inprocess", pytest.param("subprocess", marks=posix_only)]


@pytest.fixture(params=_runtime_params())
def any_executor(request, servers):
    if request.param == "inprocess":
        runtime = InProcessRuntime()
    else:
        runtime = SubprocessRuntime(python_executable=sys.executable, memory_limit_mb=0, cpu_limit_seconds=10)
    sandbox = SandboxExecutor(runtime=runtime, timeout=10, tool_call_timeout=1)
    sandbox.initialize(servers)
    return sandbox


class TestSandboxIsolation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code,error_type",
        [
            ('return json.codecs.sys.modules["os"].environ', "AttributeError"),
            ('import json\nreturn json.codecs.builtins.open("/etc/passwd").read()', "AttributeError"),
            ("import random\nreturn random._os.environ", "SecurityError"),
            ('import collections\nreturn getattr(collections, "_" + "sys").modules', "SecurityError"),
            ("import statistics\nreturn statistics.random.random()", "AttributeError"),
            ('return "{0.__class__.__mro__}".format(1)', "SecurityError"),
            ('template = "{0.__class__}"\nf = getattr(template, "for" + "mat")\nreturn f(1)', "SecurityError"),
            ("class Box:\n    pass\nreturn Box", "SecurityError"),
            ("gen = (x for x in [1])\nreturn gen.gi_frame.f_globals", "SecurityError"),
            ("return tools.__class__", "SecurityError"),
            ('pending = tools["geo/get_location"]({"city": "Oslo"})\nreturn getattr(pending, "get_" + "coro")()', "SecurityError"),
            ('import math\nmath.pi = 3\nreturn math.pi', "SecurityError"),
            ("return type(1)", "NameError"),
        ],
    )
    async def test_escape_attempt_is_rejected(self, any_executor, monkeypatch, code, error_type):
        monkeypatch.setenv("MCPAGG_TEST_SECRET", "s3cr3t-value")

        outcome = await any_executor.execute_safe(code)

        assert isinstance(outcome, SandboxExecutionError)
        assert outcome.error_type == error_type
        assert "s3cr3t-value" not in repr(outcome.to_dict())

    @pytest.mark.asyncio
    async def test_json_view_still_works(self, any_executor):
        assert await any_executor.execute('import json\nreturn json.loads(json.dumps({"a": [1, 2]}))') == {"a": [1, 2]}

    @pytest.mark.asyncio
    async def test_underscore_throwaway_name_is_allowed(self, any_executor):
        assert await any_executor.execute("total = 0\nfor _ in range(3):\n    total += 1\nreturn total") == 3

    @pytest.mark.asyncio
    async def test_big_integer_result_is_rejected(self, any_executor):
        outcome = await any_executor.execute_safe("return {'n': 2**70}")

        assert isinstance(outcome, SandboxExecutionError)
        assert outcome.error_type == "SerializationError"

    @pytest.mark.asyncio
    async def test_largest_unsigned_integer_is_exact(self, any_executor):
        assert await any_executor.execute("return 2**64 - 1") == 18446744073709551615

    @pytest.mark.asyncio
    async def test_circular_result_is_rejected(self, any_executor):
        outcome = await any_executor.execute_safe('d = {}\nd["self"] = d\nreturn d')

        assert isinstance(outcome, SandboxExecutionError)
        assert outcome.error_type == "SerializationError"


class TestCompositionGuard:
    def test_underscore_attribute_names_the_line(self):
        with pytest.raises(SecurityError, match="line 2"):
            compile_composition("x = 1\nreturn x.__dict__")

    @pytest.mark.asyncio
    async def test_attribute_reads_go_through_the_guard(self):
        guard = MagicMock(return_value=5)
        namespace = {"_getattr_": guard, "obj": object(), "__builtins__": {}}

        exec(compile_composition("return obj.value"), namespace)  # noqa: S102

        assert await namespace["__composition__"]() == 5
        guard.assert_called_once_with(namespace["obj"], "value")

    @pytest.mark.asyncio
    async def test_runtime_failure_becomes_structured_error(self, servers):
        runtime = MagicMock()
        runtime.name = "broken"
        runtime.run = AsyncMock(side_effect=OSError("interpreter vanished"))
        sandbox = SandboxExecutor(runtime=runtime, timeout=1)
        sandbox.initialize(servers)

        outcome = await sandbox.execute_safe("return 1")

        assert outcome.error_type == "SandboxFailure"
        assert "interpreter vanished" in outcome.message


class TestBuildRuntime:
    def test_kinds(self):
        assert isinstance(build_runtime("inprocess"), InProcessRuntime)
        assert isinstance(build_runtime("subprocess"), SubprocessRuntime)

    @pytest.mark.asyncio
    async def test_subprocess_health_check(self):
        assert await SubprocessRuntime(python_executable=sys.executable).health_check() is True
