# store.py -- Access to the object store through the git command line
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

"""Access to the object store through the git command line.

Every operation spawns one short-lived git process, except for the two
long-lived sessions returned by start_batch_reader() and
start_tree_session().
"""

__all__ = [
    "AncestryQuery",
    "GitStore",
    "TreeEntry",
]

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from .batch import BatchFrameDecoder, BatchObjectReader
from .config import RemapConfig
from .errors import (
    AmbiguousReferenceError,
    ObjectMissing,
    ProtocolFramingError,
    StoreError,
)
from .objects import CommitRecord, Identity
from .session import TreeMutationSession

logger = logging.getLogger(__name__)

# Fields of the ancestry listing, separated by the unit separator. The
# message goes last since it is the only field that may contain newlines.
_LOG_FIELDS = ("%m%H", "%T", "%P", "%an", "%ae", "%ad", "%cn", "%ce", "%cd", "%B")
_LOG_FORMAT = "%x1f".join(_LOG_FIELDS)

_TRACE_OUTPUT_LIMIT = 1000


@dataclass
class AncestryQuery:
    """Parameters of an ancestry listing.

    Attributes:
      include: Commit-ishes whose ancestry is listed
      exclude: Commit-ishes whose ancestry is subtracted
      paths: Optional path scope
      boundary: Also list the boundary commits of the excluded set
      full_history: Do not simplify history when a path scope is given
      first_parent: Only follow first parents
      max_count: Limit on the number of commits listed
    """

    include: Sequence[str | None]
    exclude: Sequence[str | None] = ()
    paths: Sequence[str] = ()
    boundary: bool = True
    full_history: bool = False
    first_parent: bool = False
    max_count: int | None = None

    def to_args(self) -> list[str] | None:
        """Build the git log arguments, or None if nothing is included."""
        revs = [c for c in self.include if c]
        if not revs:
            return None
        args = ["log", "-z", "--topo-order", "--date=raw"]
        if self.boundary:
            args.append("--boundary")
        if self.full_history:
            args.append("--full-history")
        if self.first_parent:
            args.append("--first-parent")
        if self.max_count is not None:
            args.append(f"--max-count={self.max_count}")
        args.append("--pretty=format:" + _LOG_FORMAT)
        args.extend(revs)
        args.extend("^" + c for c in self.exclude if c)
        paths = [p for p in self.paths if p]
        args.append("--")
        args.extend(paths)
        return args


@dataclass(frozen=True)
class TreeEntry:
    """An entry of a recursive tree listing."""

    mode: str
    type: str
    id: str
    path: str


def _parse_log_record(record: str) -> CommitRecord:
    (head, tree, parents, an, ae, ad, cn, ce, cd, message) = record.split("\x1f", 9)
    return CommitRecord(
        id=head[1:],
        tree=tree,
        parents=parents.split(),
        author=Identity.parse(f"{an} <{ae}> {ad}"),
        committer=Identity.parse(f"{cn} <{ce}> {cd}"),
        message=message,
        boundary=head[:1] == "-",
    )


class GitStore:
    """Object store client running git subprocesses."""

    def __init__(self, config: RemapConfig | None = None) -> None:
        """Initialize a GitStore.

        Args:
          config: Run configuration; supplies the git command, the
            repository path and the trace level
        """
        self.config = config or RemapConfig()

    def _argv(self, args: Sequence[str]) -> list[str]:
        return [*self.config.git_command, *args]

    def _env(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        env = dict(os.environ)
        env.update(self.config.extra_env)
        if extra:
            env.update(extra)
        return env

    def run_git(
        self,
        args: Sequence[str],
        input: bytes | None = None,
        env: Mapping[str, str] | None = None,
    ) -> bytes:
        """Run git and return its standard output.

        Raises:
          StoreError: if git exits unsuccessfully
        """
        argv = self._argv(args)
        if self.config.trace:
            logger.debug("%s", " ".join(argv))
        result = subprocess.run(
            argv,
            input=input,
            capture_output=True,
            cwd=self.config.repo_path,
            env=self._env(env),
        )
        if self.config.trace > 1:
            logger.debug(
                "%s", result.stdout[:_TRACE_OUTPUT_LIMIT].decode("utf-8", "replace")
            )
        if result.returncode != 0:
            raise StoreError(argv, result.returncode, result.stderr)
        return result.stdout

    def _popen(self, args: Sequence[str]) -> "subprocess.Popen[bytes]":
        argv = self._argv(args)
        if self.config.trace:
            logger.debug("%s", " ".join(argv))
        return subprocess.Popen(
            argv,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=self.config.repo_path,
            env=self._env(),
        )

    def read_object(self, name: str) -> tuple[str, bytes]:
        """Read an object.

        Args:
          name: Object id or any expression cat-file accepts
        Returns:
          Tuple with the object type and its raw contents
        Raises:
          ObjectMissing: if the object does not exist
        """
        output = self.run_git(
            ["cat-file", "--batch"], input=name.encode("utf-8") + b"\n"
        )
        decoder = BatchFrameDecoder()
        frames = decoder.feed(output)
        if len(frames) != 1 or decoder.pending:
            raise ProtocolFramingError(f"unexpected cat-file output for {name!r}")
        header, payload = frames[0]
        if payload is None:
            raise ObjectMissing(name)
        kind = header.rsplit(b" ", 2)[1].decode("ascii")
        return kind, payload

    def write_blob(self, data: str | bytes) -> str:
        """Write a blob and return its id."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        return self.run_git(["hash-object", "-w", "--stdin"], input=data).decode(
            "ascii"
        ).strip()

    def write_commit(
        self,
        tree: str,
        parents: Sequence[str],
        message: str,
        author: Identity | None = None,
        committer: Identity | None = None,
    ) -> str:
        """Create a commit object with ``git commit-tree``.

        Args:
          tree: Tree id of the commit
          parents: Parent ids, in order
          message: Commit message
          author: Author identity; git's defaults apply when None
          committer: Committer identity; the author is used when None. An
            empty email leaves the committer email to git
        Returns:
          The new commit id
        """
        env: dict[str, str] = {}
        if author is not None:
            env["GIT_AUTHOR_NAME"] = author.name
            env["GIT_AUTHOR_EMAIL"] = author.email
            env["GIT_AUTHOR_DATE"] = author.date
            committer = committer or author
        if committer is not None:
            env["GIT_COMMITTER_NAME"] = committer.name
            env["GIT_COMMITTER_DATE"] = committer.date
            if committer.email:
                env["GIT_COMMITTER_EMAIL"] = committer.email
        args = ["commit-tree", tree]
        for parent in parents:
            if parent:
                args.extend(["-p", parent])
        output = self.run_git(
            args, input=message.encode("utf-8", "surrogateescape"), env=env
        )
        return output.decode("ascii").strip()

    def try_resolve(self, expression: str) -> str | None:
        """Resolve a ref expression, returning None if it does not resolve."""
        try:
            output = self.run_git(["rev-parse", "--verify", "--quiet", expression])
        except StoreError:
            return None
        return output.decode("ascii").strip() or None

    def resolve_refs(self, expressions: Sequence[str]) -> list[str]:
        """Resolve ref expressions to ids.

        Raises:
          AmbiguousReferenceError: if any expression does not resolve to
            exactly one object
        """
        resolved = []
        failed = False
        for expression in expressions:
            oid = self.try_resolve(expression) if expression else None
            if oid is None:
                failed = True
            else:
                resolved.append(oid)
        if failed:
            raise AmbiguousReferenceError(expressions, resolved)
        return resolved

    def list_ancestry(self, query: AncestryQuery) -> list[CommitRecord]:
        """List commits, newest first, in topological order."""
        args = query.to_args()
        if args is None:
            return []
        output = self.run_git(args).decode("utf-8", "surrogateescape")
        return [_parse_log_record(r) for r in output.split("\x00") if r]

    def update_ref(self, ref: str, oid: str) -> None:
        """Point ref at oid."""
        self.run_git(["update-ref", ref, oid])

    def ls_tree(self, treeish: str) -> list[TreeEntry]:
        """List the blobs of a tree recursively."""
        output = self.run_git(["ls-tree", "-r", "-z", treeish])
        entries = []
        for line in output.decode("utf-8", "surrogateescape").split("\x00"):
            if not line:
                continue
            info, path = line.split("\t", 1)
            mode, kind, oid = info.split(" ")
            entries.append(TreeEntry(mode, kind, oid, path))
        return entries

    def ls_tree_names(self, treeish: str) -> list[str]:
        """List the paths of the blobs of a tree recursively."""
        output = self.run_git(["ls-tree", "-r", "-z", "--name-only", treeish])
        return [
            p for p in output.decode("utf-8", "surrogateescape").split("\x00") if p
        ]

    def config_section(self, section: str) -> dict[str, str]:
        """Read all values of a git config section.

        Keys are returned lowercased and without the section name.
        """
        try:
            output = self.run_git(
                ["config", "-z", "--get-regexp", "^" + section.lower() + r"\."]
            )
        except StoreError as e:
            # git config exits with 1 when nothing matches
            if e.returncode == 1:
                return {}
            raise
        values = {}
        for record in output.decode("utf-8", "surrogateescape").split("\x00"):
            if not record:
                continue
            key, _, value = record.partition("\n")
            values[key[len(section) + 1 :].lower()] = value
        return values

    def start_batch_reader(self) -> BatchObjectReader:
        """Start a long-lived ``git cat-file --batch`` session."""
        return BatchObjectReader(self._popen(["cat-file", "--batch"]))

    def start_tree_session(self) -> TreeMutationSession:
        """Start a long-lived ``git fast-import`` session."""
        proc = self._popen(["fast-import", "--force", "--quiet"])
        return TreeMutationSession(
            proc,
            scratch_ref=self.config.ref("tmp", 1),
            counter_ref=lambda n: self.config.ref("tmp-counter", n),
            scratch_identity=Identity.parse(self.config.scratch_identity),
        )
