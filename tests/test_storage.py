"""Tests for the local-directory and JSON Lines sinks."""

import json
import os
import tempfile
import unittest

from scrapepipe.errors import ConfigError
from scrapepipe.storage import JsonlSink, LocalDirectorySink


class TestLocalDirectorySink(unittest.TestCase):
    """Verify filenames, creation and skipping of existing files."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.dir = self._tmp.name

    def test_stores_with_origin_name(self):
        sink = LocalDirectorySink(self.dir)
        sink.store(b"\x89PNG", "img_cat.png", "image/png")
        with open(os.path.join(self.dir, "img_cat.png"), "rb") as f:
            self.assertEqual(f.read(), b"\x89PNG")

    def test_existing_file_is_skipped(self):
        """A second store under the same name leaves the first content untouched."""
        sink = LocalDirectorySink(self.dir)
        sink.store(b"first", "a.txt")
        sink.store(b"second", "a.txt")
        with open(os.path.join(self.dir, "a.txt"), "rb") as f:
            self.assertEqual(f.read(), b"first")

    def test_random_name_with_extension(self):
        sink = LocalDirectorySink(self.dir, filename="random", ext="jpeg")
        name = sink.prepare_filename("ignored")
        self.assertTrue(name.endswith(".jpeg"))
        self.assertNotIn("ignored", name)
        self.assertEqual(len(name), len("0123456789.jpeg"))

    def test_missing_directory_without_create(self):
        with self.assertRaises(ConfigError):
            LocalDirectorySink(os.path.join(self.dir, "missing"))

    def test_missing_directory_is_created(self):
        target = os.path.join(self.dir, "nested", "out")
        LocalDirectorySink(target, or_create=True)
        self.assertTrue(os.path.isdir(target))


class TestJsonlSink(unittest.TestCase):
    """Verify the background writer appends one record per item."""

    def test_writes_records(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "out.jsonl")
            sink = JsonlSink(path)
            sink.store("héllo".encode("utf-8"), "a.txt", "text/plain")
            sink.store(b"\xff\xfe", "b.bin", None)
            sink.close()

            with open(path, encoding="utf-8") as f:
                records = [json.loads(line) for line in f]

        self.assertEqual(len(records), 2)
        self.assertEqual(records[0]["content"], "héllo")
        self.assertEqual(records[0]["name"], "a.txt")
        self.assertEqual(records[1]["encoding"], "base64")
        self.assertEqual(records[1]["content"], "//4=")


if __name__ == "__main__":
    unittest.main()
