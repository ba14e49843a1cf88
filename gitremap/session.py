# session.py -- Tree mutation over a long-lived fast-import session
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

"""Tree mutation over a long-lived ``git fast-import`` session.

The session is used two ways: scratch commits whose only purpose is to let
fast-import compute a tree id (read back with ``ls ""``), and real commits
identified by marks whose ids are read back with ``get-mark``.

Replies to ``ls`` and ``get-mark`` arrive on fast-import's stdout, one line
each. Only one query may be outstanding at any time.
"""

__all__ = [
    "TreeMutationSession",
    "parse_query_reply",
]

import logging
import re
from collections.abc import Callable, Sequence
from typing import IO, Protocol

from fastimport import commands

from .errors import ProtocolFramingError, ProtocolMisuseError, StoreError
from .objects import Identity, quote_path

logger = logging.getLogger(__name__)

DIRECTORY_MODE = "040000"

_QUERY_REPLY = re.compile(
    rb"^040000 tree ([0-9a-f]+)\s|^([0-9a-f]{40})(?:\n|$)|^(missing)\b"
    rb"|^(\d{6}) (?:blob|commit) "
)


class _Process(Protocol):
    args: object
    stdin: IO[bytes] | None
    stdout: IO[bytes] | None
    stderr: IO[bytes] | None

    def wait(self) -> int: ...


def parse_query_reply(line: bytes) -> str | None:
    """Parse the reply to an ``ls`` or ``get-mark`` query.

    Returns:
      The tree or commit id, or None if the path is missing or is not a
      tree

    Raises:
      ProtocolFramingError: for replies that are neither
    """
    m = _QUERY_REPLY.match(line)
    if m is None:
        raise ProtocolFramingError(f"unexpected fast-import reply {line!r}")
    if m.group(1):
        return m.group(1).decode("ascii")
    if m.group(2):
        return m.group(2).decode("ascii")
    if m.group(4):
        logger.debug("query resolved to a non-tree entry: %r", line)
    return None


def _who(identity: Identity) -> tuple[bytes, bytes, int, int]:
    return (
        identity.name.encode("utf-8", "surrogateescape"),
        identity.email.encode("utf-8", "surrogateescape"),
        identity.time,
        identity.timezone,
    )


class TreeMutationSession:
    """Single persistent writer session."""

    def __init__(
        self,
        proc: _Process,
        *,
        scratch_ref: str,
        counter_ref: Callable[[int], str],
        scratch_identity: Identity,
    ) -> None:
        """Initialize a TreeMutationSession.

        Args:
          proc: A started ``git fast-import`` process with piped stdin/stdout
          scratch_ref: Ref scratch commits are written to
          counter_ref: Builds the ref real commits are written to from the
            per-run counter
          scratch_identity: Author/committer of scratch commits
        """
        self._proc = proc
        self.scratch_ref = scratch_ref
        self._counter_ref = counter_ref
        self.scratch_identity = scratch_identity
        self.branch_counter = 10
        self._pending: str | None = None
        self._finished = False

    def __enter__(self) -> "TreeMutationSession":
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        if exc_type is None:
            self.finish()
        else:
            self._teardown()

    def _write(self, data: bytes) -> None:
        if self._finished:
            raise ProtocolMisuseError("fast-import session already finished")
        assert self._proc.stdin is not None
        self._proc.stdin.write(data)

    def _write_commit(self, cmd: commands.CommitCommand) -> None:
        self._write(bytes(cmd) + b"\n")

    def begin_scratch_commit(
        self, base: str | None = None, message: bytes = b"tmp"
    ) -> None:
        """Start a disposable commit, used purely to compute a tree id.

        Args:
          base: Optional commit-ish whose tree seeds the scratch commit
          message: Commit message of the scratch commit
        """
        who = _who(self.scratch_identity)
        self._write_commit(
            commands.CommitCommand(
                self.scratch_ref.encode("utf-8"),
                None,
                who,
                who,
                message,
                base.encode("ascii") if base else None,
                [],
                [],
            )
        )

    def begin_commit(
        self,
        mark: int,
        message: str | bytes,
        author: Identity,
        committer: Identity,
        parents: Sequence[str],
    ) -> None:
        """Start a real commit.

        Args:
          mark: Mark to assign to the commit
          message: Commit message
          author: Author identity
          committer: Committer identity
          parents: Parent ids or ":<mark>" references; the first becomes
            the "from" line, the rest "merge" lines
        """
        if isinstance(message, str):
            message = message.encode("utf-8", "surrogateescape")
        parents = [p for p in parents if p]
        if not parents:
            self.branch_counter += 1
            logger.debug(
                "root commit on counter %d: %s", self.branch_counter, message[:80]
            )
        self._write_commit(
            commands.CommitCommand(
                self._counter_ref(self.branch_counter).encode("utf-8"),
                str(mark).encode("ascii"),
                _who(author),
                _who(committer),
                message,
                parents[0].encode("ascii") if parents else None,
                [p.encode("ascii") for p in parents[1:]],
                [],
            )
        )

    def set_subtree(self, path: str, tree_id: str) -> None:
        """Replace the subtree at path (the root for an empty path)."""
        self._write(f"M {DIRECTORY_MODE} {tree_id} {quote_path(path)}\n".encode())

    def set_file(self, path: str, mode: str, blob_id: str) -> None:
        """Place an existing blob at path."""
        self._write(f"M {mode} {blob_id} {quote_path(path)}\n".encode())

    def delete_path(self, path: str) -> None:
        """Stage deletion of a file or directory."""
        self._write(f"D {quote_path(path)}\n".encode())

    def end_commit(self) -> None:
        """Terminate the commit being built."""
        self._write(b"\n")

    def query_tree(
        self,
        callback: Callable[[str | None], None] | None = None,
        *,
        path: str = "",
        dataref: str | None = None,
    ) -> str | None:
        """Ask fast-import for the tree at path.

        Without dataref the path is looked up in the commit being built;
        with one it is looked up in that commit-ish.

        Returns:
          The tree id, or None if there is no tree at that path
        """
        if dataref:
            command = f"ls {dataref} {quote_path(path)}"
        else:
            command = f"ls {quote_path(path)}"
        return self._query(command, callback)

    def get_mark(
        self, mark: int, callback: Callable[[str | None], None] | None = None
    ) -> str | None:
        """Resolve a mark of an already terminated commit to its id."""
        return self._query(f"get-mark :{mark}", callback)

    def reset(self, ref: str, from_: str) -> None:
        """Point ref at from_ when the session finishes."""
        self._write(f"reset {ref}\nfrom {from_}\n\n".encode())

    def _query(
        self, command: str, callback: Callable[[str | None], None] | None
    ) -> str | None:
        if self._pending is not None:
            raise ProtocolMisuseError(
                f"cannot issue {command!r} while {self._pending!r} is unanswered"
            )
        self._pending = command
        self._write(command.encode("utf-8") + b"\n")
        assert self._proc.stdin is not None
        assert self._proc.stdout is not None
        self._proc.stdin.flush()
        line = self._proc.stdout.readline()
        if not line:
            self._abort(command)
        self._pending = None
        result = parse_query_reply(line)
        if callback is not None:
            callback(result)
        return result

    def _abort(self, command: str) -> None:
        self._finished = True
        assert self._proc.stdin is not None
        self._proc.stdin.close()
        stderr = self._proc.stderr.read() if self._proc.stderr else b""
        returncode = self._proc.wait()
        if returncode != 0:
            raise StoreError(_argv(self._proc), returncode, stderr)
        raise ProtocolFramingError(f"fast-import closed its output during {command!r}")

    def finish(self, callback: Callable[[], None] | None = None) -> None:
        """Close the session and wait for fast-import to write its pack.

        Raises:
          ProtocolMisuseError: if a query is still unanswered
          StoreError: if fast-import fails
        """
        if self._pending is not None:
            raise ProtocolMisuseError(f"finish() while {self._pending!r} is unanswered")
        if not self._finished:
            self._finished = True
            assert self._proc.stdin is not None
            self._proc.stdin.close()
            stderr = self._proc.stderr.read() if self._proc.stderr else b""
            returncode = self._proc.wait()
            if returncode != 0:
                raise StoreError(_argv(self._proc), returncode, stderr)
        if callback is not None:
            callback()

    def _teardown(self) -> None:
        if self._finished:
            return
        self._finished = True
        if self._proc.stdin is not None:
            self._proc.stdin.close()
        if self._proc.stdout is not None:
            self._proc.stdout.close()
        self._proc.wait()


def _argv(proc: _Process) -> list[str]:
    args = proc.args
    if isinstance(args, (list, tuple)):
        return [str(a) for a in args]
    return [str(args)]
