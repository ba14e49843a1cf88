#
# gitremap - Command-line interface to gitremap
# Copyright (C) 2026 Gitremap contributors
# vim: expandtab
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

"""Command-line interface to gitremap.

Each subcommand chooses a range and a tree transform and hands them to the
history rewriting engine; see ``gitremap <command> --help``.
"""

__all__ = [
    "Command",
    "cmd_check_rules",
    "cmd_export",
    "cmd_filter_branch",
    "cmd_split",
    "cmd_squash",
    "cmd_sync",
    "commands",
    "main",
    "signal_int",
]

import argparse
import dataclasses
import logging
import os
import signal
import sys
import types
from collections.abc import Sequence

from gitremap import porcelain
from gitremap.config import RemapConfig
from gitremap.errors import RemapError
from gitremap.filter_branch import DEFAULT_TARGET, DEFAULT_VERSION_BUMP
from gitremap.log_utils import default_logging_config
from gitremap.sync import DEFAULT_LOCAL_BRANCH, DEFAULT_MAIN_BRANCH

logger = logging.getLogger(__name__)


def signal_int(signal: int, frame: types.FrameType | None) -> None:
    """Handle interrupt signal by exiting.

    Args:
        signal: Signal number
        frame: Current stack frame
    """
    sys.exit(1)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-C",
        dest="repo",
        default=os.getcwd(),
        help="Run as if started in this repository",
    )
    parser.add_argument(
        "--prefix", help="Ref namespace for administrative refs (default: subtree)"
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Ignore the cached commit map",
    )
    parser.add_argument(
        "--no-write",
        action="store_true",
        help="Do not persist the commit map",
    )
    parser.add_argument(
        "--trace",
        type=int,
        choices=[0, 1, 2],
        default=0,
        help="Log git invocations (2: also their output)",
    )


def _config_from_args(parsed_args: argparse.Namespace) -> RemapConfig:
    config = RemapConfig(trace=parsed_args.trace)
    changes: dict[str, object] = {}
    if parsed_args.prefix:
        changes["prefix"] = parsed_args.prefix
    if parsed_args.no_cache:
        changes["cache"] = False
    if parsed_args.no_write:
        changes["cache_write"] = False
    if changes:
        config = dataclasses.replace(config, **changes)
    return config


class Command:
    """A gitremap subcommand."""

    def run(self, args: Sequence[str]) -> int | None:
        """Run the command."""
        raise NotImplementedError(self.run)


class cmd_split(Command):
    """Extract the history of a subdirectory into its own branch."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the split command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="gitremap split")
        _add_common_arguments(parser)
        parser.add_argument("name", help="Name of the derived branch")
        parser.add_argument("directory", help="Subdirectory to extract")
        parser.add_argument("--from", dest="from_", help="Oldest commit to consider")
        parser.add_argument("--to", help="Head to extract (default: origin/master)")
        parsed_args = parser.parse_args(args)

        new_head = porcelain.split(
            parsed_args.repo,
            parsed_args.name,
            parsed_args.directory,
            parsed_args.from_,
            parsed_args.to,
            config=_config_from_args(parsed_args),
        )
        if new_head is None:
            return 1
        logger.info("%s", new_head)
        return None


class cmd_export(Command):
    """Produce the public projection of a history."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the export command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="gitremap export")
        _add_common_arguments(parser)
        parser.add_argument("name", help="Name of the derived branch")
        parser.add_argument("--from", dest="from_", help="Oldest commit to consider")
        parser.add_argument("--to", help="Head to export (default: origin/master)")
        parser.add_argument("--rules", help="JSON file with the default ruleset")
        parser.add_argument(
            "--no-tree-rules",
            action="store_true",
            help="Ignore the rulesets committed in the trees",
        )
        parser.add_argument(
            "--no-strict",
            action="store_true",
            help="Drop paths not covered by the ruleset instead of failing",
        )
        parsed_args = parser.parse_args(args)

        new_head = porcelain.export(
            parsed_args.repo,
            parsed_args.name,
            parsed_args.from_,
            parsed_args.to,
            ruleset=parsed_args.rules,
            per_tree_rules=not parsed_args.no_tree_rules,
            strict=not parsed_args.no_strict,
            config=_config_from_args(parsed_args),
        )
        if new_head is None:
            return 1
        logger.info("%s", new_head)
        return None


class cmd_check_rules(Command):
    """List the files of a revision that a ruleset drops."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the check-rules command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="gitremap check-rules")
        _add_common_arguments(parser)
        parser.add_argument("rev", nargs="?", default="HEAD", help="Revision to check")
        parser.add_argument("--rules", help="JSON file with the ruleset")
        parser.add_argument(
            "--no-strict",
            action="store_true",
            help="Report paths not covered by the ruleset instead of failing",
        )
        parsed_args = parser.parse_args(args)

        deletes = porcelain.check_rules(
            parsed_args.repo,
            parsed_args.rev,
            ruleset=parsed_args.rules,
            strict=not parsed_args.no_strict,
            config=_config_from_args(parsed_args),
        )
        for path in deletes:
            logger.info("%s", path)
        return None


class cmd_sync(Command):
    """Replay the commits of a mirror onto the merge ref."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the sync command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="gitremap sync")
        _add_common_arguments(parser)
        parser.add_argument("name", help="Name of the mirror")
        parser.add_argument(
            "directory", nargs="?", help="Directory the mirror corresponds to"
        )
        parser.add_argument("--remote", help="Ref of the mirror")
        parser.add_argument(
            "--main-branch",
            default=DEFAULT_MAIN_BRANCH,
            help=f"Ref of the main branch (default: {DEFAULT_MAIN_BRANCH})",
        )
        parser.add_argument("--merge-ref", help="Ref the replayed commits go to")
        parsed_args = parser.parse_args(args)

        head = porcelain.sync(
            parsed_args.repo,
            parsed_args.name,
            parsed_args.directory,
            remote=parsed_args.remote,
            main_branch=parsed_args.main_branch,
            merge_ref=parsed_args.merge_ref,
            config=_config_from_args(parsed_args),
        )
        if head is None:
            logger.info("nothing to sync")
        else:
            logger.info("%s", head)
        return None


class cmd_squash(Command):
    """Import the newest state of a mirror as one commit."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the squash command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="gitremap squash")
        _add_common_arguments(parser)
        parser.add_argument("name", help="Name of the mirror")
        parser.add_argument(
            "directory", nargs="?", help="Directory the mirror corresponds to"
        )
        parser.add_argument("--remote", help="Ref of the mirror")
        parser.add_argument(
            "--local",
            default=DEFAULT_LOCAL_BRANCH,
            help=f"Local branch (default: {DEFAULT_LOCAL_BRANCH})",
        )
        parser.add_argument("--merge-ref", help="Ref the new commit goes to")
        parsed_args = parser.parse_args(args)

        logger.info(
            "%s",
            porcelain.squash(
                parsed_args.repo,
                parsed_args.name,
                parsed_args.directory,
                remote=parsed_args.remote,
                local=parsed_args.local,
                merge_ref=parsed_args.merge_ref,
                config=_config_from_args(parsed_args),
            ),
        )
        return None


class cmd_filter_branch(Command):
    """Rewrite the whole history of a branch."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the filter-branch command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="gitremap filter-branch")
        _add_common_arguments(parser)
        parser.add_argument("branch", help="Branch to rewrite")
        parser.add_argument(
            "--root-path", default="", help="Directory every tree is moved to"
        )
        parser.add_argument(
            "--root-commit", help="Commit whose tree the relocated trees go into"
        )
        parser.add_argument(
            "--exclude",
            action="append",
            default=[],
            help="Path to remove (may be given multiple times)",
        )
        parser.add_argument("--exclude-file", help="File listing paths to remove")
        parser.add_argument(
            "--actions-file", help="File listing per-commit actions (<id> squash)"
        )
        parser.add_argument(
            "--version-bump",
            default=DEFAULT_VERSION_BUMP,
            help="Pattern of commit messages folded into their child",
        )
        parser.add_argument(
            "--no-version-bump",
            action="store_true",
            help="Do not fold version bumps",
        )
        parser.add_argument(
            "--target",
            default=DEFAULT_TARGET,
            help=f"Ref pointed at the result (default: {DEFAULT_TARGET})",
        )
        parsed_args = parser.parse_args(args)

        new_head = porcelain.filter_branch(
            parsed_args.repo,
            parsed_args.branch,
            root_path=parsed_args.root_path,
            root_commit=parsed_args.root_commit,
            exclude_file=parsed_args.exclude_file,
            excludes=parsed_args.exclude,
            actions_file=parsed_args.actions_file,
            version_bump_pattern=(
                None if parsed_args.no_version_bump else parsed_args.version_bump
            ),
            target_ref=parsed_args.target,
            config=_config_from_args(parsed_args),
        )
        if new_head is None:
            return 1
        logger.info("%s", new_head)
        return None


commands = {
    "check-rules": cmd_check_rules,
    "export": cmd_export,
    "filter-branch": cmd_filter_branch,
    "split": cmd_split,
    "squash": cmd_squash,
    "sync": cmd_sync,
}


def main(argv: Sequence[str] | None = None) -> int | None:
    """Main entry point for the gitremap CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code or None
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="gitremap",
        description="Rewrite git histories into derived histories",
        add_help=False,
    )
    parser.add_argument("--help", "-h", action="store_true", help="Show help")
    global_args, remaining = parser.parse_known_args(argv)

    if global_args.help or not remaining:
        parser = argparse.ArgumentParser(
            prog="gitremap", description="Rewrite git histories into derived histories"
        )
        parser.add_argument(
            "command",
            nargs="?",
            help=f"Command to run. Available: {', '.join(sorted(commands.keys()))}",
        )
        parser.print_help()
        return 1

    default_logging_config()

    cmd = remaining[0]
    cmd_args = remaining[1:]

    try:
        cmd_kls = commands[cmd]
    except KeyError:
        logging.fatal("No such subcommand: %s", cmd)
        return 1
    try:
        return cmd_kls().run(cmd_args)
    except RemapError as e:
        logging.error("%s: %s", cmd, e)
        return 1


def _main() -> None:
    signal.signal(signal.SIGINT, signal_int)

    sys.exit(main())


if __name__ == "__main__":
    _main()
