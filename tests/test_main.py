"""
Unit tests for the main.py startup path: config loading, token lookup and logging setup.
"""
import io
import json
import logging
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr
from pathlib import Path
from unittest.mock import AsyncMock, patch

import main


class StartupTestCase(unittest.TestCase):
    """Writes config files into a temporary directory."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, content) -> Path:
        path = self.temp_dir / "config.json"
        text = content if isinstance(content, str) else json.dumps(content)
        path.write_text(text, encoding='utf-8')
        return path

    def valid_config(self, **client):
        return {
            "bot": {"token": "file-token", "command_prefix": "!"},
            "client": dict({"authority_url": "http://localhost:4000", "tick_interval": 1,
                            "resync_interval": 10}, **client),
            "logging": {"level": "INFO", "log_directory": str(self.temp_dir / "logs")},
        }


class TestReadConfig(StartupTestCase):

    def test_reads_json_object(self):
        path = self.write_config(self.valid_config())
        self.assertEqual(main.read_config(path)["bot"]["token"], "file-token")

    def test_missing_file(self):
        with self.assertRaises(main.StartupError):
            main.read_config(self.temp_dir / "absent.json")

    def test_invalid_json(self):
        path = self.write_config("{not json")
        with self.assertRaises(main.StartupError):
            main.read_config(path)

    def test_non_object_json(self):
        path = self.write_config([1, 2, 3])
        with self.assertRaises(main.StartupError):
            main.read_config(path)


class TestResolveToken(unittest.TestCase):

    @patch.dict(os.environ, {"DISCORD_BOT_TOKEN": "env-token"}, clear=True)
    def test_environment_takes_precedence(self):
        self.assertEqual(main.resolve_token({"bot": {"token": "file-token"}}), "env-token")

    @patch.dict(os.environ, {}, clear=True)
    def test_config_token_used_without_environment(self):
        self.assertEqual(main.resolve_token({"bot": {"token": "file-token"}}), "file-token")

    @patch.dict(os.environ, {}, clear=True)
    def test_placeholder_or_missing_token_rejected(self):
        for config in ({"bot": {"token": main.TOKEN_PLACEHOLDER}}, {"bot": {}}, {}):
            with self.subTest(config=config):
                with self.assertRaises(main.StartupError):
                    main.resolve_token(config)


class TestCheckClientConfig(StartupTestCase):

    @patch.dict(os.environ, {}, clear=True)
    def test_valid_section_has_no_problems(self):
        self.assertEqual(main.check_client_config(self.valid_config()), [])

    @patch.dict(os.environ, {}, clear=True)
    def test_rejected_values_are_reported(self):
        config = self.valid_config(tick_interval=-1, authority_url="ftp://nowhere")
        with self.assertLogs('timed_quiz.config_manager', level='ERROR'):
            problems = main.check_client_config(config)

        self.assertEqual(len(problems), 2)

    @patch.dict(os.environ, {}, clear=True)
    def test_resync_faster_than_tick_is_reported(self):
        config = self.valid_config(tick_interval=5, resync_interval=2)
        problems = main.check_client_config(config)

        self.assertEqual(len(problems), 1)
        self.assertIn("shorter than tick interval", problems[0])


class TestConfigureLogging(StartupTestCase):

    def test_errors_get_their_own_file(self):
        config = self.valid_config()
        with patch('main.logging.basicConfig') as basic_config:
            log_directory = main.configure_logging(config)

        handlers = basic_config.call_args.kwargs['handlers']
        try:
            self.assertTrue(log_directory.is_dir())
            files = {Path(h.baseFilename).name: h for h in handlers
                     if isinstance(h, logging.FileHandler)}
            self.assertEqual(set(files), {"quiz_client.log", "errors.log"})
            self.assertEqual(files["errors.log"].level, logging.ERROR)
            self.assertEqual(basic_config.call_args.kwargs['level'], logging.INFO)
        finally:
            for handler in handlers:
                handler.close()


class TestMain(StartupTestCase):

    def test_missing_config_exits_with_error(self):
        stderr = io.StringIO()
        with redirect_stderr(stderr):
            code = main.main([str(self.temp_dir / "absent.json")])

        self.assertEqual(code, 1)
        self.assertIn("not found", stderr.getvalue())

    @patch.dict(os.environ, {}, clear=True)
    def test_invalid_client_section_stops_before_bot(self):
        path = self.write_config(self.valid_config(resync_interval="often"))
        stderr = io.StringIO()
        with patch('main.configure_logging'), \
                patch('timed_quiz.bot.run_bot', new_callable=AsyncMock) as run_bot, \
                redirect_stderr(stderr):
            code = main.main([str(path)])

        self.assertEqual(code, 1)
        self.assertIn("Invalid client configuration", stderr.getvalue())
        run_bot.assert_not_awaited()

    @patch.dict(os.environ, {"DISCORD_BOT_TOKEN": "env-token"}, clear=True)
    def test_valid_config_runs_bot_with_environment_token(self):
        config = self.valid_config()
        path = self.write_config(config)
        with patch('main.configure_logging'), \
                patch('timed_quiz.bot.run_bot', new_callable=AsyncMock) as run_bot, \
                redirect_stderr(io.StringIO()), \
                patch('sys.stdout', new_callable=io.StringIO):
            code = main.main([str(path)])

        self.assertEqual(code, 0)
        run_bot.assert_awaited_once_with("env-token", config)

    @patch.dict(os.environ, {}, clear=True)
    def test_config_path_from_environment(self):
        path = self.write_config(self.valid_config())
        os.environ["QUIZ_CONFIG"] = str(path)
        with patch('main.configure_logging'), \
                patch('timed_quiz.bot.run_bot', new_callable=AsyncMock) as run_bot, \
                patch('sys.stdout', new_callable=io.StringIO):
            code = main.main([])

        self.assertEqual(code, 0)
        run_bot.assert_awaited_once()


if __name__ == '__main__':
    unittest.main()
