#!/usr/bin/env python3
"""Tests for the MCP server wiring: dataset bootstrap and tool registration."""

import shutil
import tempfile
import unittest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent))

from mcp.server.fastmcp import FastMCP

from dataset_sync.config import Config
from dataset_sync.git_sync.origin import Origin
from dataset_sync.git_sync.repository import Repository
from dataset_sync.git_sync.status import UnbornHead, head_status
from dataset_sync.server import _configured_origin, open_dataset, register_tools


class TestOpenDataset(unittest.TestCase):
    """Test cases for opening or creating the configured dataset."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def test_initializes_missing_dataset(self):
        config = Config(dataset_dir=self.temp_dir / "dataset")

        repository = open_dataset(config)

        self.assertEqual(head_status(repository.repo), UnbornHead("main"))
        self.assertIsNotNone(Repository.try_open(config.dataset_dir))

    def test_clones_configured_remote(self):
        remote_path = self.temp_dir / "remote.git"
        Repository.init_bare(remote_path)
        config = Config(dataset_dir=self.temp_dir / "dataset", remote_url=str(remote_path))

        repository = open_dataset(config)

        self.assertEqual(repository.get_origin(), Origin(str(remote_path)))

    def test_reopens_existing_dataset(self):
        config = Config(dataset_dir=self.temp_dir / "dataset")
        first = open_dataset(config)
        (first.path / "data.csv").write_text("1\n")
        commit_id = first.commit()

        again = open_dataset(config)

        self.assertEqual(again.repo.head.commit.hexsha, commit_id)

    def test_configured_origin(self):
        config = Config(dataset_dir=self.temp_dir, remote_url="https://example.com/d.git", remote_token="abc")

        self.assertEqual(_configured_origin(config, None, None), Origin("https://example.com/d.git", "abc"))
        self.assertEqual(
            _configured_origin(config, "https://example.com/e.git", "xyz"),
            Origin("https://example.com/e.git", "xyz")
        )
        self.assertIsNone(_configured_origin(Config(dataset_dir=self.temp_dir), None, None))

    def test_configured_token_not_sent_to_other_url(self):
        config = Config(
            dataset_dir=self.temp_dir,
            remote_url="https://good.example/r.git",
            remote_token="SECRET"
        )

        origin = _configured_origin(config, "https://other.example/x.git", None)

        self.assertEqual(origin, Origin("https://other.example/x.git"))
        self.assertEqual(origin.auth_headers(), [])
        self.assertEqual(
            _configured_origin(config, "https://good.example/r.git", None),
            Origin("https://good.example/r.git", "SECRET")
        )


class TestToolRegistration(unittest.TestCase):
    """Test cases for tool registration."""

    def test_tools_registered(self):
        server = FastMCP("Dataset Sync Test")

        register_tools(server, Config(dataset_dir=Path(tempfile.gettempdir()) / "dataset-sync-unused"))

        names = {tool.name for tool in server._tool_manager.list_tools()}
        self.assertEqual(names, {"repository_status", "commit", "pull", "resolve", "sync"})


if __name__ == '__main__':
    unittest.main(verbosity=2)
