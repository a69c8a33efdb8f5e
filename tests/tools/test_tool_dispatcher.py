import asyncio
import unittest
from typing import Any

from devmentor.errors import ToolExecutionError
from devmentor.tool_dispatcher import ToolDispatcher, validate_params
from devmentor.tool_registry import get_by_session_type


class _EchoTool:
    name = "echo"
    description = "Echo text back"
    input_schema = {
        "type": "object",
        "properties": {
            "text": {"type": "string"},
            "times": {"type": "integer"},
            "mode": {"type": "string", "enum": ["plain", "loud"]},
        },
        "required": ["text"],
    }

    async def execute(self, tool_input: dict[str, Any]) -> str:
        text = tool_input["text"] * tool_input.get("times", 1)
        return text.upper() if tool_input.get("mode") == "loud" else text


class _FailingTool:
    name = "fail"
    description = "Always fails"
    input_schema = {"type": "object", "properties": {}}

    def __init__(self, error: Exception):
        self._error = error

    async def execute(self, tool_input: dict[str, Any]) -> str:
        raise self._error


class TestValidateParams(unittest.TestCase):
    def test_required_and_types(self) -> None:
        schema = _EchoTool.input_schema
        self.assertIsNone(validate_params(schema, {"text": "hi", "times": 2}))
        self.assertEqual("Missing required parameter: text", validate_params(schema, {}))
        self.assertEqual("Parameter 'text' must not be empty", validate_params(schema, {"text": "  "}))
        self.assertEqual("Parameter 'times' must be of type integer", validate_params(schema, {"text": "a", "times": "2"}))
        self.assertEqual("Parameter 'times' must be of type integer", validate_params(schema, {"text": "a", "times": True}))
        self.assertEqual(
            "Parameter 'mode' must be one of: plain, loud",
            validate_params(schema, {"text": "a", "mode": "quiet"}),
        )


class TestToolDispatcher(unittest.TestCase):
    def setUp(self) -> None:
        self.dispatcher = ToolDispatcher(
            {
                "devops": [_EchoTool(), _FailingTool(ToolExecutionError("disk unreadable"))],
                "general": [],
            },
            max_result_chars=20,
        )

    def test_success_envelope(self) -> None:
        result = asyncio.run(self.dispatcher.execute("echo", {"text": "hi", "mode": "loud"}))
        self.assertEqual({"success": True, "result": "HI"}, result.to_dict())

    def test_unknown_tool_and_bad_params_never_raise(self) -> None:
        unknown = asyncio.run(self.dispatcher.execute("rm_rf", {}))
        self.assertEqual({"success": False, "error": 'Unknown tool "rm_rf"'}, unknown.to_dict())

        not_object = asyncio.run(self.dispatcher.execute("echo", ["hi"]))
        self.assertEqual("Tool parameters must be an object", not_object.error)

        missing = asyncio.run(self.dispatcher.execute("echo", None))
        self.assertEqual("Missing required parameter: text", missing.error)

    def test_tool_errors_become_failures(self) -> None:
        result = asyncio.run(self.dispatcher.execute("fail", {}))
        self.assertFalse(result.success)
        self.assertEqual("disk unreadable", result.error)

    def test_unexpected_exceptions_are_reported(self) -> None:
        dispatcher = ToolDispatcher({"devops": [_FailingTool(RuntimeError("kaboom"))]})
        result = asyncio.run(dispatcher.execute("fail", {}))
        self.assertEqual('Error executing tool "fail": kaboom', result.error)

    def test_long_output_is_truncated(self) -> None:
        result = asyncio.run(self.dispatcher.execute("echo", {"text": "abcde", "times": 10}))
        self.assertTrue(result.success)
        self.assertTrue(result.result.startswith("abcde" * 4))
        self.assertIn("[OUTPUT TRUNCATED: Showing 20 of 50 characters]", result.result)

    def test_listing_is_per_session_type(self) -> None:
        names = [d.name for d in self.dispatcher.list_tools("devops")]
        self.assertEqual(["echo", "fail"], names)
        self.assertEqual([], self.dispatcher.list_tools("general"))
        self.assertEqual([], self.dispatcher.list_tools("unknown"))
        self.assertEqual({"name", "description", "parameters"}, set(self.dispatcher.list_tools("devops")[0].to_dict()))


class TestDevopsToolset(unittest.TestCase):
    def setUp(self) -> None:
        self.dispatcher = ToolDispatcher(get_by_session_type())

    def test_only_devops_sessions_have_tools(self) -> None:
        self.assertEqual(
            ["read_file", "list_directory", "analyze_config", "analyze_error"],
            [t.name for t in self.dispatcher.tools_for("devops")],
        )
        for session_type in ("general", "writing", "development"):
            self.assertEqual([], self.dispatcher.tools_for(session_type))

    def test_analyze_shortcuts(self) -> None:
        config = asyncio.run(self.dispatcher.analyze_config("FROM node:latest\nRUN npm install\n"))
        self.assertTrue(config.success)
        self.assertIn("Using :latest base image", config.result)

        unknown = asyncio.run(self.dispatcher.analyze_config("hello", "auto"))
        self.assertFalse(unknown.success)
        self.assertIn("specify the type", unknown.error)

        error = asyncio.run(self.dispatcher.analyze_error("OOMKilled", "kubernetes"))
        self.assertIn("exceeded memory limits", error.result)


if __name__ == "__main__":
    unittest.main()
