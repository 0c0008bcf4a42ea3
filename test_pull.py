#!/usr/bin/env python3
"""
End-to-end tests for the pull engine.

Every test works against a real bare repository seeded through a working
clone, so fetches, ancestry checks and checkouts all go through git.
"""

import shutil
import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

import sys
sys.path.insert(0, str(Path(__file__).parent))

from git import Actor, Commit

from dataset_sync.config import Config
from dataset_sync.errors import (
    BackendError, Cancelled, CannotFastForward, CheckoutConflict, DetachedHeadError,
    NotOnDefaultBranch, UnknownDefaultBranch
)
from dataset_sync.git_sync.merge_analysis import MergeAnalysis, analyze_merge, move_branch
from dataset_sync.git_sync.origin import Origin
from dataset_sync.git_sync.pull import PullOutcome, PullState, pull
from dataset_sync.git_sync.repository import Repository
from dataset_sync.git_sync.settings import Settings
from dataset_sync.git_sync.status import BranchHead, head_status, repository_status


def write_file(repository: Repository, name: str, text: str) -> Path:
    path = repository.path / name
    path.write_text(text, encoding="utf-8")
    return path


def tip(repository: Repository, ref: str = "HEAD") -> str:
    return repository.repo.git.rev_parse(ref)


class PullTestCase(unittest.TestCase):
    """Bare remote seeded with one commit on main."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.config = Config(dataset_dir=self.temp_dir / "dataset")

        self.remote_path = self.temp_dir / "remote.git"
        self.remote = Repository.init_bare(self.remote_path, self.config)
        self.origin = Origin(url=str(self.remote_path))

        self.seed = Repository.clone(self.temp_dir / "seed", self.origin, self.config)
        write_file(self.seed, "data.csv", "id,value\n1,a\n")
        self.seed.commit()
        self.seed.push(self.origin)

    def tearDown(self):
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def remote_tip(self) -> str:
        return self.remote.repo.git.rev_parse("refs/heads/main")

    def publish(self, name: str, text: str) -> str:
        write_file(self.seed, name, text)
        commit_id = self.seed.commit()
        self.seed.push(self.origin)
        return commit_id


class TestPullOutcomes(PullTestCase):
    """Test cases for the three successful pull outcomes."""

    def test_unborn_local_creates_branch(self):
        """Test pulling into an empty repository creates the default branch at the remote tip."""
        local = Repository.init(self.temp_dir / "local", self.config)

        outcome = local.pull(self.origin)

        self.assertEqual(outcome, PullOutcome.created_unborn("main"))
        self.assertEqual(head_status(local.repo), BranchHead("main"))
        self.assertEqual(tip(local), self.remote_tip())
        self.assertEqual((local.path / "data.csv").read_text(), "id,value\n1,a\n")

    def test_behind_local_fast_forwards(self):
        local = Repository.clone(self.temp_dir / "local", self.origin, self.config)
        published = self.publish("data.csv", "id,value\n1,a\n2,b\n")

        outcome = local.pull()

        self.assertEqual(outcome.state, PullState.FAST_FORWARDED)
        self.assertEqual(outcome.branch, "main")
        self.assertEqual(tip(local), published)
        self.assertEqual(tip(local, "refs/heads/main"), self.remote_tip())
        self.assertEqual((local.path / "data.csv").read_text(), "id,value\n1,a\n2,b\n")
        self.assertTrue(local.working_tree_status().is_clean)

    def test_up_to_date_is_idempotent(self):
        """Test consecutive pulls of an up-to-date repository change nothing."""
        local = Repository.clone(self.temp_dir / "local", self.origin, self.config)
        before = tip(local)

        first = local.pull()
        second = local.pull()

        self.assertEqual(first, PullOutcome.up_to_date("main"))
        self.assertEqual(second, first)
        self.assertEqual(tip(local), before)

    def test_local_ahead_is_up_to_date(self):
        local = Repository.clone(self.temp_dir / "local", self.origin, self.config)
        write_file(local, "notes.txt", "local only\n")
        ahead = local.commit()

        self.assertEqual(local.pull(), PullOutcome.up_to_date("main"))
        self.assertEqual(tip(local), ahead)

    def test_outcome_serialization(self):
        self.assertEqual(
            PullOutcome.fast_forwarded("main").to_dict(),
            {"state": "fast_forwarded", "branch": "main"}
        )

    def test_progress_counters_never_decrease(self):
        local = Repository.clone(self.temp_dir / "local", self.origin, self.config)
        self.publish("big.csv", "x\n" * 1000)
        updates = []

        local.pull(progress=updates.append)

        last = {}
        for update in updates:
            self.assertGreaterEqual(update.received, last.get(update.stage, 0))
            last[update.stage] = update.received


class TestPullFailures(PullTestCase):
    """Test cases for the branch guard and non-linear histories."""

    def setUp(self):
        super().setUp()
        self.local = Repository.clone(self.temp_dir / "local", self.origin, self.config)

    def test_not_on_default_branch_without_switch(self):
        self.local.repo.create_head("feature").checkout()

        with self.assertRaises(NotOnDefaultBranch):
            self.local.pull(switch=False)

    def test_switch_to_default_branch(self):
        self.local.repo.create_head("feature").checkout()
        published = self.publish("more.csv", "1\n")

        outcome = self.local.pull(switch=True)

        self.assertEqual(outcome, PullOutcome.fast_forwarded("main"))
        self.assertEqual(head_status(self.local.repo), BranchHead("main"))
        self.assertEqual(tip(self.local), published)

    def test_switch_creates_branch_from_remote_tracking(self):
        self.local.repo.create_head("feature").checkout()
        self.local.repo.delete_head("main")

        outcome = self.local.pull(switch=True)

        self.assertEqual(outcome, PullOutcome.up_to_date("main"))
        self.assertEqual(head_status(self.local.repo), BranchHead("main"))

    def test_detached_head(self):
        self.local.repo.git.checkout("--detach")

        with self.assertRaises(DetachedHeadError):
            self.local.pull(switch=True)

        with self.assertRaises(NotOnDefaultBranch):
            self.local.pull(switch=False)

    def test_diverged_cannot_fast_forward(self):
        self.publish("remote.csv", "remote\n")
        write_file(self.local, "local.csv", "local\n")
        local_tip = self.local.commit()

        with self.assertRaises(CannotFastForward):
            self.local.pull()

        self.assertEqual(tip(self.local), local_tip)

    def test_uncommitted_changes_block_fast_forward(self):
        self.publish("data.csv", "id,value\n1,remote\n")
        write_file(self.local, "data.csv", "id,value\n1,local edit\n")
        before = tip(self.local)

        with self.assertRaises(CheckoutConflict):
            self.local.pull()

        self.assertEqual(tip(self.local), before)
        self.assertEqual((self.local.path / "data.csv").read_text(), "id,value\n1,local edit\n")

    def test_unrelated_local_changes_survive_fast_forward(self):
        self.publish("remote.csv", "remote\n")
        write_file(self.local, "data.csv", "id,value\n1,local edit\n")

        outcome = self.local.pull()

        self.assertEqual(outcome.state, PullState.FAST_FORWARDED)
        self.assertTrue((self.local.path / "remote.csv").exists())
        self.assertEqual((self.local.path / "data.csv").read_text(), "id,value\n1,local edit\n")

    def test_cancelled_before_fetch(self):
        self.publish("more.csv", "1\n")
        before = tip(self.local)
        cancel = threading.Event()
        cancel.set()

        with self.assertRaises(Cancelled):
            self.local.pull(cancel=cancel)

        self.assertEqual(tip(self.local), before)


class TestPullEngine(PullTestCase):
    """Test cases driving the engine with explicit settings."""

    def test_default_branch_queried_from_remote(self):
        local = Repository.clone(self.temp_dir / "local", self.origin, self.config)
        settings = Settings()
        status, remote = repository_status(local.repo, settings)

        outcome = pull(local.repo, settings, status, remote=remote)

        self.assertEqual(status.default_branch, "main")
        self.assertEqual(remote.name, "origin")
        self.assertEqual(outcome, PullOutcome.up_to_date("main"))

    def test_unknown_default_branch(self):
        local = Repository.init(self.temp_dir / "local", self.config)
        local.repo.create_remote("origin", str(self.temp_dir / "missing.git"))
        settings = Settings()
        status, remote = repository_status(local.repo, settings)

        self.assertIsNone(status.default_branch)
        self.assertIsNone(remote)
        with self.assertRaises(UnknownDefaultBranch):
            pull(local.repo, settings, status, remote=remote)

    def test_merge_analysis(self):
        local = Repository.clone(self.temp_dir / "local", self.origin, self.config)
        base = tip(local)
        published = self.publish("more.csv", "1\n")
        local.repo.remote("origin").fetch()

        self.assertEqual(analyze_merge(local.repo, base), MergeAnalysis.UP_TO_DATE)
        self.assertEqual(analyze_merge(local.repo, published), MergeAnalysis.FAST_FORWARD)

        write_file(local, "local.csv", "1\n")
        local.commit()
        self.assertEqual(analyze_merge(local.repo, published), MergeAnalysis.DIVERGED)

        empty = Repository.init(self.temp_dir / "empty", self.config)
        self.assertEqual(analyze_merge(empty.repo, published), MergeAnalysis.UNBORN)

    def test_failed_branch_update_restores_working_tree(self):
        local = Repository.clone(self.temp_dir / "local", self.origin, self.config)
        self.publish("data.csv", "id,value\n1,a\n2,b\n")
        actor = Actor(self.config.author_name, self.config.author_email)
        concurrent = Commit.create_from_tree(
            local.repo, local.repo.head.commit.tree, "concurrent",
            parent_commits=[local.repo.head.commit], head=False, author=actor, committer=actor
        ).hexsha

        def move_after_concurrent_writer(repo, branch, new_commit, old_commit):
            repo.git.update_ref(f"refs/heads/{branch}", concurrent)
            move_branch(repo, branch, new_commit, old_commit)

        with patch("dataset_sync.git_sync.merge_analysis.move_branch", side_effect=move_after_concurrent_writer):
            with self.assertRaises(BackendError):
                local.pull()

        self.assertEqual(tip(local, "refs/heads/main"), concurrent)
        self.assertEqual((local.path / "data.csv").read_text(), "id,value\n1,a\n")
        self.assertTrue(local.working_tree_status().is_clean)

    def test_origin_written_to_remote_named_by_settings(self):
        local = Repository.init(self.temp_dir / "local", self.config)
        local.repo.create_remote("mirror", str(self.temp_dir / "old-mirror.git"))
        settings = Settings(default_remote="mirror")

        outcome = local.pull(self.origin, settings=settings)

        self.assertEqual(outcome, PullOutcome.created_unborn("main"))
        self.assertEqual(
            [(r.name, r.url) for r in local.repo.remotes],
            [("mirror", str(self.remote_path))]
        )
        self.assertEqual(local.get_origin(settings), self.origin)
        self.assertIsNone(local.get_origin())
        self.assertEqual((local.path / "data.csv").read_text(), "id,value\n1,a\n")


class TestPullPrune(PullTestCase):
    """Test cases for the prune policy applied by the fetch."""

    def setUp(self):
        super().setUp()
        self.seed.repo.git.push("origin", "refs/heads/main:refs/heads/extra")
        self.local = Repository.clone(self.temp_dir / "local", self.origin, self.config)
        self.assertIn("refs/remotes/origin/extra", self.tracking_refs())
        self.remote.repo.git.update_ref("-d", "refs/heads/extra")

    def tracking_refs(self):
        return self.local.repo.git.for_each_ref("--format=%(refname)", "refs/remotes/origin").split()

    def test_prune_on_removes_vanished_branch(self):
        self.local.pull(settings=Settings(prune=True))

        self.assertNotIn("refs/remotes/origin/extra", self.tracking_refs())
        self.assertIn("refs/remotes/origin/main", self.tracking_refs())

    def test_prune_off_keeps_vanished_branch(self):
        self.local.repo.git.config("fetch.prune", "true")

        self.local.pull(settings=Settings(prune=False))

        self.assertIn("refs/remotes/origin/extra", self.tracking_refs())

    def test_prune_unspecified_follows_repository_config(self):
        self.local.pull()
        self.assertIn("refs/remotes/origin/extra", self.tracking_refs())

        self.local.repo.git.config("fetch.prune", "true")
        self.local.pull()
        self.assertNotIn("refs/remotes/origin/extra", self.tracking_refs())


if __name__ == '__main__':
    unittest.main(verbosity=2)
