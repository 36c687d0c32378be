"""
Unit tests for SessionStore.
"""
import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from timed_quiz.errors import SessionStoreError
from timed_quiz.session_store import SessionStore


class TestSessionStore(unittest.TestCase):
    """Test cases for persisted session id handling."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "state" / "session.json"
        self.store = SessionStore(str(self.path))

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_file_means_no_session(self):
        self.assertIsNone(self.store.load_session_id())

    def test_save_creates_directory_and_round_trips(self):
        self.store.save_session_id("abc")

        self.assertTrue(self.path.exists())
        self.assertEqual(self.store.load_session_id(), "abc")
        with open(self.path, encoding='utf-8') as f:
            self.assertEqual(json.load(f), {"quiz_session_id": "abc"})

    def test_survives_new_instance(self):
        self.store.save_session_id("abc")
        reloaded = SessionStore(str(self.path))
        self.assertEqual(reloaded.load_session_id(), "abc")

    def test_clear_removes_only_own_key(self):
        other = self.store.for_key("quiz_session_id:42")
        self.store.save_session_id("abc")
        other.save_session_id("xyz")

        self.store.clear_session_id()

        self.assertIsNone(self.store.load_session_id())
        self.assertEqual(other.load_session_id(), "xyz")

    def test_clear_without_file_is_noop(self):
        self.store.clear_session_id()
        self.assertFalse(self.path.exists())

    def test_corrupt_file_treated_as_empty(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{ not json", encoding='utf-8')

        with self.assertLogs('timed_quiz.session_store', level='ERROR'):
            self.assertIsNone(self.store.load_session_id())

        self.store.save_session_id("abc")
        self.assertEqual(self.store.load_session_id(), "abc")

    def test_non_string_value_ignored(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text(json.dumps({"quiz_session_id": 12}), encoding='utf-8')

        with self.assertLogs('timed_quiz.session_store', level='WARNING'):
            self.assertIsNone(self.store.load_session_id())

    def test_write_failure_raises_store_error(self):
        with patch('timed_quiz.session_store.os.replace', side_effect=OSError("disk full")):
            with self.assertRaises(SessionStoreError):
                self.store.save_session_id("abc")

        leftovers = [p for p in os.listdir(self.path.parent) if p.endswith(".tmp")]
        self.assertEqual(leftovers, [])


if __name__ == '__main__':
    unittest.main()
