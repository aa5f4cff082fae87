import asyncio
import unittest

from tests.support import FakeTool
from turnloop.errors import ExternalExecutionRequired, ToolExecutionError, ToolNotFoundError
from turnloop.tool_invoker import ToolInvoker
from turnloop.tool_registry import ToolRegistry
from turnloop.types import Role, ToolCall, ToolResult


def _invoker(*tools, **kwargs) -> ToolInvoker:
    return ToolInvoker(ToolRegistry(tools), session_id="s1", **kwargs)


class ToolInvokerTests(unittest.TestCase):
    def test_success_produces_tool_message(self) -> None:
        tool = FakeTool("echo", results=[ToolResult.ok("pong")])
        call = ToolCall(name="echo", arguments={"text": "ping"}, id="c1")
        message = asyncio.run(_invoker(tool).execute(call))
        self.assertEqual(Role.TOOL, message.role)
        self.assertEqual("pong", message.content)
        self.assertEqual("c1", message.tool_call_id)
        self.assertEqual("s1", message.session_id)
        self.assertEqual([{"text": "ping"}], tool.calls)

    def test_unknown_tool_raises(self) -> None:
        with self.assertRaises(ToolNotFoundError) as ctx:
            asyncio.run(_invoker().execute(ToolCall(name="missing")))
        self.assertEqual("missing", ctx.exception.name)

    def test_failed_result_becomes_error_message(self) -> None:
        tool = FakeTool("fs", results=[ToolResult.fail("disk full")])
        invocation = asyncio.run(_invoker(tool).execute_detailed(ToolCall(name="fs")))
        self.assertEqual("Error: disk full", invocation.message.content)
        self.assertFalse(invocation.result.success)
        self.assertFalse(invocation.loop_detected)

    def test_exception_becomes_error_message(self) -> None:
        tool = FakeTool("boom", error=ToolExecutionError("kaput"))
        message = asyncio.run(_invoker(tool).execute(ToolCall(name="boom")))
        self.assertEqual("Error: Failed to execute tool boom: kaput", message.content)

    def test_can_execute_false_is_a_failure(self) -> None:
        tool = FakeTool("gated", allowed=False)
        invocation = asyncio.run(_invoker(tool).execute_detailed(ToolCall(name="gated")))
        self.assertFalse(invocation.result.success)
        self.assertTrue(invocation.message.content.startswith("Error: "))
        self.assertEqual([], tool.calls)

    def test_external_execution_propagates(self) -> None:
        tool = FakeTool("remote", external=True)
        with self.assertRaises(ExternalExecutionRequired):
            asyncio.run(_invoker(tool).execute(ToolCall(name="remote")))

    def test_third_identical_call_is_a_loop(self) -> None:
        tool = FakeTool("read")
        invoker = _invoker(tool)

        async def run():
            results = []
            for _ in range(3):
                results.append(await invoker.execute_detailed(ToolCall(name="read", arguments={"path": "a"})))
            results.append(await invoker.execute_detailed(ToolCall(name="read", arguments={"path": "b"})))
            return results

        results = asyncio.run(run())
        self.assertEqual([False, False, True, False], [r.loop_detected for r in results])
        self.assertEqual([{"path": "a"}, {"path": "a"}, {"path": "b"}], tool.calls)
        self.assertIn("Loop detected", results[2].message.content)
        self.assertTrue(results[2].message.content.startswith("Error: "))

    def test_argument_key_order_does_not_matter(self) -> None:
        tool = FakeTool("t")
        invoker = _invoker(tool)

        async def run():
            await invoker.execute(ToolCall(name="t", arguments={"a": 1, "b": 2}))
            await invoker.execute(ToolCall(name="t", arguments={"b": 2, "a": 1}))
            return await invoker.execute_detailed(ToolCall(name="t", arguments={"a": 1, "b": 2}))

        self.assertTrue(asyncio.run(run()).loop_detected)
        self.assertEqual(2, len(tool.calls))

    def test_interleaved_calls_are_not_a_loop(self) -> None:
        tool = FakeTool("t")
        invoker = _invoker(tool)

        async def run():
            for args in ({"x": 1}, {"x": 1}, {"x": 2}, {"x": 1}, {"x": 1}):
                await invoker.execute(ToolCall(name="t", arguments=args))

        asyncio.run(run())
        self.assertEqual(5, len(tool.calls))

    def test_reset_clears_window(self) -> None:
        tool = FakeTool("t")
        invoker = _invoker(tool)

        async def run():
            await invoker.execute(ToolCall(name="t"))
            await invoker.execute(ToolCall(name="t"))
            invoker.reset()
            return await invoker.execute_detailed(ToolCall(name="t"))

        self.assertFalse(asyncio.run(run()).loop_detected)
        self.assertEqual(3, len(tool.calls))

    def test_custom_threshold(self) -> None:
        tool = FakeTool("t")
        invoker = _invoker(tool, loop_threshold=2)

        async def run():
            await invoker.execute(ToolCall(name="t"))
            return await invoker.execute_detailed(ToolCall(name="t"))

        self.assertTrue(asyncio.run(run()).loop_detected)

    def test_threshold_below_two_rejected(self) -> None:
        with self.assertRaises(ValueError):
            _invoker(loop_threshold=1)

    def test_execute_all_runs_in_order_and_keeps_going(self) -> None:
        ok = FakeTool("ok")
        bad = FakeTool("bad", error=RuntimeError("nope"))
        calls = [
            ToolCall(name="ok", arguments={"n": 1}, id="1"),
            ToolCall(name="bad", id="2"),
            ToolCall(name="ghost", id="3"),
            ToolCall(name="ok", arguments={"n": 2}, id="4"),
        ]
        messages = asyncio.run(_invoker(ok, bad).execute_all(calls))
        self.assertEqual(["1", "2", "3", "4"], [m.tool_call_id for m in messages])
        self.assertEqual("ok ok", messages[0].content)
        self.assertTrue(messages[1].content.startswith("Error: "))
        self.assertEqual("Error: Tool 'ghost' not found", messages[2].content)
        self.assertEqual([{"n": 1}, {"n": 2}], ok.calls)

    def test_execute_all_propagates_external_execution(self) -> None:
        remote = FakeTool("remote", external=True)
        with self.assertRaises(ExternalExecutionRequired):
            asyncio.run(_invoker(remote).execute_all([ToolCall(name="remote")]))


if __name__ == "__main__":
    unittest.main()
