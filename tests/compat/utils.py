# utils.py -- Git compatibility utilities
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

"""Utilities for running a real git in tests."""

__all__ = [
    "CompatTestCase",
    "git_version",
    "require_git_version",
    "run_git",
    "run_git_or_fail",
]

import os
import shutil
import subprocess
import tempfile

from .. import SkipTest, TestCase

_DEFAULT_GIT = "git"
_VERSION_LEN = 4

# Deterministic identities and dates for commits made in tests
GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test Author",
    "GIT_AUTHOR_EMAIL": "author@example.com",
    "GIT_COMMITTER_NAME": "Test Committer",
    "GIT_COMMITTER_EMAIL": "committer@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def git_version(git_path: str = _DEFAULT_GIT) -> tuple[int, ...] | None:
    """Attempt to determine the version of git currently installed.

    Args:
      git_path: Path to the git executable; defaults to the version in
        the system path.
    Returns: A tuple of ints of the form (major, minor, point, sub-point), or
        None if no git installation was found.
    """
    try:
        _, output, _ = run_git(["--version"], git_path=git_path, capture_stdout=True)
    except OSError:
        return None
    version_prefix = b"git version "
    if not output.startswith(version_prefix):
        return None

    parts = output[len(version_prefix) :].split(b".")
    nums = []
    for part in parts:
        try:
            nums.append(int(part))
        except ValueError:
            break

    while len(nums) < _VERSION_LEN:
        nums.append(0)
    return tuple(nums[:_VERSION_LEN])


def require_git_version(
    required_version: tuple[int, ...], git_path: str = _DEFAULT_GIT
) -> None:
    """Require git version >= version, or skip the calling test.

    Args:
      required_version: A tuple of ints of the form (major, minor, point,
        sub-point); omitted components default to 0.
      git_path: Path to the git executable; defaults to the version in
        the system path.

    Raises:
      ValueError: if the required version tuple has too many parts.
      SkipTest: if no suitable git version was found at the given path.
    """
    found_version = git_version(git_path=git_path)
    if found_version is None:
        raise SkipTest(f"Test requires git >= {required_version}, but c git not found")

    if len(required_version) > _VERSION_LEN:
        raise ValueError(
            f"Invalid version tuple {required_version}, expected {_VERSION_LEN} parts"
        )

    required_version = tuple(required_version) + (0,) * (
        _VERSION_LEN - len(required_version)
    )
    if found_version < required_version:
        required = ".".join(map(str, required_version))
        found = ".".join(map(str, found_version))
        raise SkipTest(f"Test requires git >= {required}, found {found}")


def run_git(
    args: list[str],
    git_path: str = _DEFAULT_GIT,
    input: bytes | None = None,
    capture_stdout: bool = False,
    capture_stderr: bool = False,
    **popen_kwargs,
) -> tuple[int, bytes | None, bytes | None]:
    """Run a git command.

    Input is piped from the input parameter and output is sent to the standard
    streams, unless capture_stdout is set.

    Args:
      args: A list of args to the git command.
      git_path: Path to to the git executable.
      input: Input data to be sent to stdin.
      capture_stdout: Whether to capture and return stdout.
      capture_stderr: Whether to capture and return stderr.
      **popen_kwargs: Additional kwargs for subprocess.Popen;
        stdin/stdout args are ignored.
    Returns: A tuple of (returncode, stdout contents, stderr contents).
        If capture_stdout is False, None will be returned as stdout contents.
    Raises:
      OSError: if the git executable was not found.
    """
    env = popen_kwargs.pop("env", {})
    env["LC_ALL"] = env["LANG"] = "C"
    env["PATH"] = os.getenv("PATH", "")
    for name, value in GIT_ENV.items():
        env.setdefault(name, value)

    args = [git_path, *args]
    popen_kwargs["stdin"] = subprocess.PIPE
    if capture_stdout:
        popen_kwargs["stdout"] = subprocess.PIPE
    else:
        popen_kwargs.pop("stdout", None)
    if capture_stderr:
        popen_kwargs["stderr"] = subprocess.PIPE
    else:
        popen_kwargs.pop("stderr", None)
    p = subprocess.Popen(args, env=env, **popen_kwargs)
    stdout, stderr = p.communicate(input=input)
    return (p.returncode, stdout, stderr)


def run_git_or_fail(
    args: list[str],
    git_path: str = _DEFAULT_GIT,
    input: bytes | None = None,
    **popen_kwargs,
) -> bytes:
    """Run a git command, capture stdout/stderr, and fail if git fails."""
    if "stderr" not in popen_kwargs:
        popen_kwargs["stderr"] = subprocess.STDOUT
    returncode, stdout, stderr = run_git(
        args, git_path=git_path, input=input, capture_stdout=True, **popen_kwargs
    )
    if returncode != 0:
        raise AssertionError(
            f"git with args {args!r} failed with {returncode}: stdout={stdout!r} stderr={stderr!r}"
        )
    assert stdout is not None
    return stdout


class CompatTestCase(TestCase):
    """Test case that requires git for compatibility checks.

    Subclasses can change the git version required by overriding
    min_git_version.
    """

    min_git_version: tuple[int, ...] = (2, 28, 0)

    def setUp(self) -> None:
        super().setUp()
        require_git_version(self.min_git_version)
        self._commit_time = 1500000000

    def init_repo(self) -> str:
        """Create an empty repository in a temporary directory."""
        path = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, path)
        run_git_or_fail(["init", "--quiet", "-b", "master", path])
        return path

    def git(self, repo: str, *args: str, input: bytes | None = None) -> str:
        """Run git in repo and return its stripped output."""
        return (
            run_git_or_fail(list(args), cwd=repo, input=input, stderr=subprocess.PIPE)
            .decode("utf-8")
            .strip()
        )

    def commit_files(
        self,
        repo: str,
        files: dict[str, str | None],
        message: str,
        *,
        parents: list[str] | None = None,
    ) -> str:
        """Commit a set of changes on top of the current HEAD.

        Args:
          repo: Repository path
          files: Map of path to new content; None removes the path
          message: Commit message
          parents: Explicit parents; defaults to HEAD (if any)
        Returns: The id of the new commit
        """
        for path, content in files.items():
            full = os.path.join(repo, path)
            if content is None:
                self.git(repo, "rm", "-q", "-r", "--", path)
                continue
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "w", encoding="utf-8") as f:
                f.write(content)
            self.git(repo, "add", "--", path)
        tree = self.git(repo, "write-tree")
        if parents is None:
            head = run_git(
                ["rev-parse", "--verify", "--quiet", "HEAD"],
                cwd=repo,
                capture_stdout=True,
            )[1]
            parents = [head.decode().strip()] if head and head.strip() else []
        self._commit_time += 60
        date = f"{self._commit_time} +0000"
        args = ["commit-tree", tree, "-m", message]
        for parent in parents:
            args.extend(["-p", parent])
        commit = (
            run_git_or_fail(
                args,
                cwd=repo,
                stderr=subprocess.PIPE,
                env={"GIT_AUTHOR_DATE": date, "GIT_COMMITTER_DATE": date},
            )
            .decode()
            .strip()
        )
        self.git(repo, "update-ref", "HEAD", commit)
        return commit
