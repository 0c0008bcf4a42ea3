#!/usr/bin/env python3
"""
Unit tests for the transport helpers that do not need a remote:
FETCH_HEAD parsing, merge target selection, header environment,
ls-remote parsing and progress forwarding.
"""

import unittest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent))

from git import RemoteProgress

from dataset_sync.git_sync.transport import (
    FetchResult, TransferProgress, _ProgressAdapter, fetch_refspecs,
    header_environment, parse_fetch_head, parse_symref_head
)

SHA_MAIN = "1" * 40
SHA_DEV = "2" * 40
SHA_TAG = "3" * 40

FETCH_HEAD = (
    f"{SHA_DEV}\t\tbranch 'develop' of /srv/remote.git\n"
    f"{SHA_MAIN}\t\tbranch 'main' of /srv/remote.git\n"
    f"{SHA_TAG}\tnot-for-merge\ttag 'v1.0' of /srv/remote.git\n"
)


class TestFetchHead(unittest.TestCase):
    """Test cases for FETCH_HEAD parsing."""

    def test_parse_entries(self):
        entries = parse_fetch_head(FETCH_HEAD)

        self.assertEqual(len(entries), 3)
        self.assertEqual(entries[0].commit_id, SHA_DEV)
        self.assertTrue(entries[0].for_merge)
        self.assertEqual(entries[0].branch, "develop")
        self.assertFalse(entries[2].for_merge)
        self.assertIsNone(entries[2].branch)

    def test_merge_target_prefers_requested_branch(self):
        result = FetchResult("origin", "/srv/remote.git", parse_fetch_head(FETCH_HEAD))

        self.assertEqual(result.merge_target("main").commit_id, SHA_MAIN)
        self.assertEqual(result.merge_target().commit_id, SHA_DEV)
        self.assertEqual(result.merge_target("missing").commit_id, SHA_DEV)

    def test_no_merge_target(self):
        text = f"{SHA_TAG}\tnot-for-merge\ttag 'v1.0' of /srv/remote.git\n"
        result = FetchResult("origin", "/srv/remote.git", parse_fetch_head(text))

        self.assertIsNone(result.merge_target("main"))
        self.assertIsNone(FetchResult("origin", "/srv/remote.git", []).merge_target())

    def test_blank_and_malformed_lines_ignored(self):
        self.assertEqual(parse_fetch_head("\n\ngarbage\n"), [])


class TestTransportHelpers(unittest.TestCase):
    """Test cases for request construction helpers."""

    def test_header_environment(self):
        env = header_environment(["Authorization: token abc"])

        self.assertEqual(env, {
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": "Authorization: token abc",
        })
        self.assertEqual(header_environment([]), {})
        self.assertEqual(header_environment(None), {})

    def test_fetch_refspecs_put_default_branch_first(self):
        self.assertEqual(fetch_refspecs("origin", "main"), [
            "+refs/heads/main:refs/remotes/origin/main",
            "+refs/heads/*:refs/remotes/origin/*",
        ])

    def test_parse_symref_head(self):
        output = f"ref: refs/heads/trunk\tHEAD\n{SHA_MAIN}\tHEAD"
        self.assertEqual(parse_symref_head(output), "trunk")
        self.assertIsNone(parse_symref_head(""))
        self.assertIsNone(parse_symref_head(f"{SHA_MAIN}\tHEAD"))


class TestProgressAdapter(unittest.TestCase):
    """Test cases for progress forwarding."""

    def test_counters_never_decrease_within_a_stage(self):
        updates = []
        adapter = _ProgressAdapter(updates.append)

        adapter.update(RemoteProgress.RECEIVING | RemoteProgress.BEGIN, 10, 100, "")
        adapter.update(RemoteProgress.RECEIVING, 5, 100, "")
        adapter.update(RemoteProgress.RECEIVING | RemoteProgress.END, 100, 100, "done")
        adapter.update(RemoteProgress.RESOLVING, 3, None, "")

        self.assertEqual([u.received for u in updates], [10, 10, 100, 3])
        self.assertEqual(updates[0], TransferProgress("receiving", 10, 100, ""))
        self.assertEqual(updates[2].message, "done")
        self.assertEqual(updates[3].stage, "resolving")
        self.assertIsNone(updates[3].total)


if __name__ == '__main__':
    unittest.main(verbosity=2)
