# test_cli.py -- tests for the command line interface
# Copyright (C) 2026 Gitremap contributors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# Gitremap is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Tests for gitremap.cli."""

import contextlib
import io
from unittest import mock

from gitremap import cli
from gitremap.config import RemapConfig
from gitremap.errors import ClassificationError
from gitremap.filter_branch import DEFAULT_TARGET, DEFAULT_VERSION_BUMP
from gitremap.sync import DEFAULT_LOCAL_BRANCH, DEFAULT_MAIN_BRANCH

from . import TestCase

HEAD = "a" * 40


class CliTestCase(TestCase):
    def setUp(self) -> None:
        super().setUp()
        patcher = mock.patch("gitremap.cli.default_logging_config")
        patcher.start()
        self.addCleanup(patcher.stop)

    def patch_porcelain(self, name, **kwargs):
        patcher = mock.patch.object(cli.porcelain, name, **kwargs)
        mocked = patcher.start()
        self.addCleanup(patcher.stop)
        return mocked

    def run_command(self, *args):
        with self.assertLogs("gitremap.cli", level="INFO") as cm:
            result = cli.main(list(args))
        return result, [r.getMessage() for r in cm.records]


class MainTests(CliTestCase):
    def test_help(self) -> None:
        stdout = io.StringIO()
        with contextlib.redirect_stdout(stdout):
            self.assertEqual(1, cli.main(["--help"]))
        self.assertIn("filter-branch", stdout.getvalue())

    def test_no_arguments(self) -> None:
        with contextlib.redirect_stdout(io.StringIO()):
            self.assertEqual(1, cli.main([]))

    def test_unknown_command(self) -> None:
        with self.assertLogs(level="CRITICAL") as cm:
            self.assertEqual(1, cli.main(["frobnicate"]))
        self.assertEqual(
            ["No such subcommand: frobnicate"], [r.getMessage() for r in cm.records]
        )

    def test_remap_error(self) -> None:
        self.patch_porcelain(
            "check_rules", side_effect=ClassificationError("", ["x"], [], [])
        )
        with self.assertLogs(level="ERROR") as cm:
            self.assertEqual(1, cli.main(["check-rules"]))
        self.assertTrue(cm.records[0].getMessage().startswith("check-rules: "))

    def test_commands(self) -> None:
        self.assertEqual(
            ["check-rules", "export", "filter-branch", "split", "squash", "sync"],
            sorted(cli.commands),
        )


class SplitTests(CliTestCase):
    def test_split(self) -> None:
        split = self.patch_porcelain("split", return_value=HEAD)
        result, messages = self.run_command(
            "split", "-C", "/repo", "lib", "src/lib", "--from", "v1", "--to", "main"
        )
        self.assertIsNone(result)
        self.assertEqual([HEAD], messages)
        split.assert_called_once_with(
            "/repo", "lib", "src/lib", "v1", "main", config=RemapConfig()
        )

    def test_split_unmapped_head(self) -> None:
        self.patch_porcelain("split", return_value=None)
        self.assertEqual(1, cli.main(["split", "lib", "src/lib"]))

    def test_common_options(self) -> None:
        split = self.patch_porcelain("split", return_value=HEAD)
        self.run_command(
            "split",
            "--prefix",
            "refs/remap",
            "--no-cache",
            "--no-write",
            "--trace",
            "2",
            "lib",
            "src",
        )
        self.assertEqual(
            RemapConfig(prefix="refs/remap", cache=False, cache_write=False, trace=2),
            split.call_args.kwargs["config"],
        )


class ExportTests(CliTestCase):
    def test_export(self) -> None:
        export = self.patch_porcelain("export", return_value=HEAD)
        result, messages = self.run_command(
            "export", "-C", "/repo", "public", "--rules", "rules.json", "--no-strict"
        )
        self.assertIsNone(result)
        export.assert_called_once_with(
            "/repo",
            "public",
            None,
            None,
            ruleset="rules.json",
            per_tree_rules=True,
            strict=False,
            config=RemapConfig(),
        )

    def test_no_tree_rules(self) -> None:
        export = self.patch_porcelain("export", return_value=HEAD)
        self.run_command("export", "public", "--no-tree-rules")
        self.assertFalse(export.call_args.kwargs["per_tree_rules"])
        self.assertTrue(export.call_args.kwargs["strict"])


class CheckRulesTests(CliTestCase):
    def test_lists_drops(self) -> None:
        check = self.patch_porcelain("check_rules", return_value=["a/", "b.txt"])
        self.assertIsNone(cli.main(["check-rules", "-C", "/repo"]))
        with self.assertLogs("gitremap.cli", level="INFO") as cm:
            cli.main(["check-rules", "-C", "/repo", "v2"])
        self.assertEqual(["a/", "b.txt"], [r.getMessage() for r in cm.records])
        check.assert_called_with(
            "/repo", "v2", ruleset=None, strict=True, config=RemapConfig()
        )


class SyncTests(CliTestCase):
    def test_sync(self) -> None:
        sync = self.patch_porcelain("sync", return_value=HEAD)
        _, messages = self.run_command("sync", "-C", "/repo", "lib", "src/lib")
        self.assertEqual([HEAD], messages)
        sync.assert_called_once_with(
            "/repo",
            "lib",
            "src/lib",
            remote=None,
            main_branch=DEFAULT_MAIN_BRANCH,
            merge_ref=None,
            config=RemapConfig(),
        )

    def test_nothing_to_sync(self) -> None:
        self.patch_porcelain("sync", return_value=None)
        _, messages = self.run_command("sync", "lib")
        self.assertEqual(["nothing to sync"], messages)


class SquashTests(CliTestCase):
    def test_squash(self) -> None:
        squash = self.patch_porcelain("squash", return_value=HEAD)
        _, messages = self.run_command(
            "squash", "-C", "/repo", "lib", "--remote", "refs/heads/mirror"
        )
        self.assertEqual([HEAD], messages)
        squash.assert_called_once_with(
            "/repo",
            "lib",
            None,
            remote="refs/heads/mirror",
            local=DEFAULT_LOCAL_BRANCH,
            merge_ref=None,
            config=RemapConfig(),
        )


class FilterBranchTests(CliTestCase):
    def test_defaults(self) -> None:
        fb = self.patch_porcelain("filter_branch", return_value=HEAD)
        self.run_command("filter-branch", "-C", "/repo", "main")
        fb.assert_called_once_with(
            "/repo",
            "main",
            root_path="",
            root_commit=None,
            exclude_file=None,
            excludes=[],
            actions_file=None,
            version_bump_pattern=DEFAULT_VERSION_BUMP,
            target_ref=DEFAULT_TARGET,
            config=RemapConfig(),
        )

    def test_options(self) -> None:
        fb = self.patch_porcelain("filter_branch", return_value=HEAD)
        self.run_command(
            "filter-branch",
            "main",
            "--root-path",
            "packages/app",
            "--exclude",
            "build",
            "--exclude",
            "docs",
            "--no-version-bump",
            "--target",
            "refs/heads/out",
        )
        kwargs = fb.call_args.kwargs
        self.assertEqual("packages/app", kwargs["root_path"])
        self.assertEqual(["build", "docs"], kwargs["excludes"])
        self.assertIsNone(kwargs["version_bump_pattern"])
        self.assertEqual("refs/heads/out", kwargs["target_ref"])
