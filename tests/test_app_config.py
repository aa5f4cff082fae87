import json
import os
import shutil
import unittest
from pathlib import Path
from unittest.mock import patch
from uuid import uuid4

from turnloop.app_config import load_json_config, parse_app_config, resolve_runtime_env

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class ParseAppConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        app = parse_app_config({})
        self.assertEqual("anthropic", app.provider_name)
        self.assertEqual(5, app.max_turns)
        self.assertEqual(3, app.loop_threshold)
        self.assertEqual(["function_name"], app.sentinel_tool_names)
        self.assertEqual([], app.client_tools)
        self.assertEqual({}, app.mcp_server_configs)
        self.assertIsNone(app.log_consumers)
        self.assertIsNone(app.system_prompt)
        self.assertEqual(1024, app.max_sessions)

    def test_pascal_case_keys(self) -> None:
        app = parse_app_config({
            "Provider": " OpenAI ",
            "Model": "gpt-4o",
            "MaxTokens": "2048",
            "Temperature": 0.2,
            "MaxTurns": 8,
            "LoopThreshold": 4,
            "SentinelToolNames": ["function_name", "tool_name"],
            "WorkingDirectory": "/work",
            "ClientTools": [{"Name": "ask"}],
            "LogLevel": "DEBUG",
            "SystemPrompt": "custom",
            "MaxSessions": 16,
        })
        self.assertEqual("openai", app.provider_name)
        self.assertEqual("gpt-4o", app.model)
        self.assertEqual(2048, app.max_tokens)
        self.assertEqual(0.2, app.temperature)
        self.assertEqual(8, app.max_turns)
        self.assertEqual(4, app.loop_threshold)
        self.assertEqual(["function_name", "tool_name"], app.sentinel_tool_names)
        self.assertEqual("/work", app.working_directory)
        self.assertEqual([{"Name": "ask"}], app.client_tools)
        self.assertEqual("DEBUG", app.log_level)
        self.assertEqual("custom", app.system_prompt)
        self.assertEqual(16, app.max_sessions)

    def test_unknown_provider_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_app_config({"Provider": "llamas"})

    def test_invalid_limits_rejected(self) -> None:
        with self.assertRaises(ValueError):
            parse_app_config({"MaxTurns": 0})
        with self.assertRaises(ValueError):
            parse_app_config({"LoopThreshold": 1})
        with self.assertRaises(ValueError):
            parse_app_config({"MaxSessions": 0})


class LoadJsonConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = PROJECT_ROOT / ".test-artifacts" / f"config-{uuid4().hex}"
        self._tmp_dir.mkdir(parents=True, exist_ok=True)

    def tearDown(self) -> None:
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def test_reads_given_path(self) -> None:
        path = self._tmp_dir / "config.json"
        path.write_text(json.dumps({"Model": "m"}), encoding="utf-8")
        self.assertEqual({"Model": "m"}, load_json_config(path))

    def test_missing_file_is_empty(self) -> None:
        self.assertEqual({}, load_json_config(self._tmp_dir / "absent.json"))

    def test_dotenv_file_supplies_key(self) -> None:
        env_file = self._tmp_dir / ".env"
        env_file.write_text("OPENAI_API_KEY=from-dotenv\n", encoding="utf-8")
        with patch.dict(os.environ, {}, clear=True):
            env = resolve_runtime_env("openai", dotenv_path=env_file)
        self.assertEqual("from-dotenv", env.provider_api_key)
        self.assertEqual("OPENAI_API_KEY", env.provider_env_var)

    def test_process_environment_wins_over_dotenv(self) -> None:
        env_file = self._tmp_dir / ".env"
        env_file.write_text("ANTHROPIC_API_KEY=from-dotenv\n", encoding="utf-8")
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "from-env"}, clear=True):
            env = resolve_runtime_env("anthropic", dotenv_path=env_file)
        self.assertEqual("from-env", env.provider_api_key)


if __name__ == "__main__":
    unittest.main()
