# remap.py -- Incremental rewriting of commit history
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

"""Incremental rewriting of commit history.

HistoryRemapper walks the commits of a range oldest-first, computes a new
tree for each through a tree transform, and creates a new commit per old
commit unless the new tree is identical to the new tree of one of its
parents, in which case the old commit is mapped to that parent's new
commit (elision). Results accumulate in a CommitMap, so later runs only
process commits that are not mapped yet.
"""

__all__ = [
    "CommitTreeWriter",
    "CommitWriter",
    "HistoryRemapper",
    "ImportCommitWriter",
    "MessageFilter",
    "PendingCommit",
    "collapse_replaceable",
    "commit_map_lookup",
]

import logging
import re
import warnings
from collections.abc import Callable, Sequence
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Protocol

from .commitmap import CommitMap, CommitMapCache
from .config import RemapConfig
from .errors import MissingTreeWarning, ObjectMissing, ProtocolFramingError
from .objects import CommitRecord, parse_commit
from .session import TreeMutationSession
from .store import AncestryQuery
from .transforms import TreeTransform

logger = logging.getLogger(__name__)

_HEX_TOKEN = re.compile(r"\b[0-9a-f]{10,}\b")


@dataclass
class PendingCommit:
    """A commit of the range being rewritten.

    Attributes:
      record: The old commit as listed
      parents: Parents that are mapped or part of the range
      new_tree: Tree computed by the transform; None if there is none
      is_main_line: Whether the commit is on the first-parent chain of the
        head of the range
      connected: False if the first parent had to be dropped
      is_replaceable: Whether the commit may be folded into its child
      aliases: Old ids folded into this commit
    """

    record: CommitRecord
    parents: list[str]
    new_tree: str | None = None
    is_main_line: bool = False
    connected: bool = True
    is_replaceable: bool = False
    aliases: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.record.id


def commit_map_lookup(commit_map: CommitMap) -> Callable[[str], str | None]:
    """Build an id lookup for MessageFilter from a CommitMap.

    Full ids are looked up directly; abbreviated ids are resolved by unique
    prefix and replaced by the new id abbreviated to the same length.
    """

    def lookup(token: str) -> str | None:
        new_id = commit_map.get(token)
        if new_id is not None:
            return new_id
        full = commit_map.lookup_prefix(token)
        if full is None:
            return None
        return commit_map[full][: len(token)]

    return lookup


class MessageFilter:
    """Rewrites commit messages for the derived history.

    Issue references are moved to the other tracker by swapping the two
    sigils (``+123`` and ``#123`` with the defaults), and hex tokens of 10
    or more digits that name a mapped commit are replaced with the new id.
    """

    def __init__(
        self,
        lookup: Callable[[str], str | None],
        sigils: Sequence[str] = ("+", "#"),
    ) -> None:
        self.lookup = lookup
        self._swap: dict[str, str] = {}
        self._sigil_re: re.Pattern[str] | None = None
        if len(sigils) >= 2 and sigils[0] != sigils[1]:
            a, b = sigils[0], sigils[1]
            self._swap = {a: b, b: a}
            self._sigil_re = re.compile(
                "(" + re.escape(a) + "|" + re.escape(b) + r")(\d+)"
            )

    def _swap_sigil(self, m: re.Match[str]) -> str:
        return self._swap[m.group(1)] + m.group(2)

    def _replace_id(self, m: re.Match[str]) -> str:
        return self.lookup(m.group(0)) or m.group(0)

    def __call__(self, message: str) -> str:
        if self._sigil_re is not None:
            message = self._sigil_re.sub(self._swap_sigil, message)
        return _HEX_TOKEN.sub(self._replace_id, message)


class CommitWriter(Protocol):
    """Materializes rewritten commits."""

    def write(
        self,
        record: CommitRecord,
        tree: str,
        parents: Sequence[str],
        message: str,
    ) -> str: ...


class CommitTreeWriter:
    """Writes each commit with one ``git commit-tree`` invocation."""

    def __init__(self, store) -> None:
        self.store = store

    def write(self, record, tree, parents, message):
        return self.store.write_commit(
            tree, parents, message, author=record.author, committer=record.committer
        )


class ImportCommitWriter:
    """Writes commits inside a fast-import session, reading ids back by mark.

    The session is started on first use, so that it sees every tree written
    by sessions finished before it. Commits created earlier in the same
    session are only known to fast-import by mark until it finishes, so
    they are referred to as ``:<mark>``.
    """

    def __init__(self, start_session: Callable[[], TreeMutationSession]) -> None:
        self._start_session = start_session
        self.session: TreeMutationSession | None = None
        self.mark = 0
        self._marks: dict[str, int] = {}

    def __enter__(self) -> "ImportCommitWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.session is not None:
            self.session.__exit__(exc_type, exc_val, exc_tb)

    def _session(self) -> TreeMutationSession:
        if self.session is None:
            self.session = self._start_session()
        return self.session

    def write(self, record, tree, parents, message):
        session = self._session()
        self.mark += 1
        session.begin_commit(
            self.mark,
            message,
            record.author,
            record.committer,
            [self._ref(p) for p in parents],
        )
        session.set_subtree("", tree)
        session.end_commit()
        oid = session.get_mark(self.mark)
        if oid is None:
            raise ProtocolFramingError(
                f"fast-import did not resolve mark :{self.mark}"
            )
        self._marks[oid] = self.mark
        return oid

    def reset(self, ref: str, oid: str) -> None:
        """Point ref at oid once the session finishes."""
        self._session().reset(ref, self._ref(oid))

    def _ref(self, oid: str) -> str:
        mark = self._marks.get(oid)
        return oid if mark is None else f":{mark}"


def collapse_replaceable(pending: list[PendingCommit]) -> list[PendingCommit]:
    """Fold replaceable commits forward into their only child.

    A replaceable commit whose only child has it as its only parent is
    removed; the child takes over its parents and its aliases. A chain of
    replaceable commits thus ends up as a single commit. The list must be
    ordered oldest-first.

    Returns:
      The remaining commits, oldest-first
    """
    children: dict[str, list[PendingCommit]] = {}
    for commit in pending:
        for parent in commit.parents:
            children.setdefault(parent, []).append(commit)

    folded: set[str] = set()
    for commit in pending:
        if not commit.is_replaceable:
            continue
        kids = children.get(commit.id, [])
        if len(kids) != 1 or len(kids[0].parents) != 1:
            continue
        child = kids[0]
        logger.debug("folding %s into %s", commit.id, child.id)
        child.parents = list(commit.parents)
        child.aliases.extend([*commit.aliases, commit.id])
        for parent in commit.parents:
            siblings = children.get(parent, [])
            children[parent] = [child if c is commit else c for c in siblings]
        folded.add(commit.id)
    return [c for c in pending if c.id not in folded]


class HistoryRemapper:
    """Rewrites a commit range into a derived history."""

    def __init__(
        self,
        store,
        transform: TreeTransform,
        commit_map: CommitMap,
        *,
        config: RemapConfig | None = None,
        reader=None,
        writer: CommitWriter | None = None,
        message_filter: Callable[[str], str] | None = None,
        replaceable: Callable[[CommitRecord], bool] | None = None,
        skip: Callable[[CommitRecord], bool] | None = None,
        full_history: bool = False,
    ) -> None:
        """Initialize a HistoryRemapper.

        Args:
          store: GitStore holding both histories
          transform: Computes the new tree of each commit
          commit_map: Mapping of already rewritten commits; updated in place
          config: Run configuration; defaults to the store's
          reader: BatchObjectReader to use; one is started per run if None
          writer: How new commits are created; defaults to commit-tree
          message_filter: Rewrites commit messages; defaults to swapping
            issue sigils and rewriting mapped ids
          replaceable: Flags commits that may be folded into their child
          skip: Flags commits that are left out of the derived history
          full_history: List the range with --full-history
        """
        self.store = store
        self.transform = transform
        self.commit_map = commit_map
        self.config = config or store.config
        self.reader = reader
        self.writer = writer or CommitTreeWriter(store)
        if message_filter is None:
            message_filter = MessageFilter(
                commit_map_lookup(commit_map), self.config.issue_sigils
            )
        self.message_filter = message_filter
        self.replaceable = replaceable
        self.skip = skip
        self.full_history = full_history
        self.old_commits: dict[str, PendingCommit] = {}
        self.new_trees: dict[str, str | None] = {}
        self.pending: list[PendingCommit] = []
        self.created: list[str] = []
        self.skipped: list[str] = []

    def run(
        self,
        start: str | None,
        end: str,
        cached: str | None = None,
        *,
        target_ref: str | None = None,
        cache: CommitMapCache | None = None,
    ) -> str | None:
        """Rewrite the commits between start and end.

        Args:
          start: Exclusive lower bound of the range (may be None)
          end: Head of the range
          cached: Newest commit known to be in the target branch
          target_ref: Ref pointed at the new head, if any
          cache: Cache the commit map is persisted to, if any
        Returns:
          The new id of end, or None if it is not mapped
        """
        owns_reader = self.reader is None
        with ExitStack() as stack:
            if owns_reader:
                self.reader = stack.enter_context(self.store.start_batch_reader())
            if not (cached and self.commit_map.last):
                cached = self.commit_map.last_checked = self.commit_map.last
                self.bootstrap()
            self.load_frontier(start, end, cached)
            self.build_candidates(start, end, cached)
            if self.replaceable is not None:
                self.pending = collapse_replaceable(self.pending)
            with self.store.start_tree_session() as session:
                self.compute_trees(session)
            self.materialize()
        if owns_reader:
            self.reader = None
        return self.publish(end, target_ref, cache)

    def _tree_of(self, new_id: str) -> str | None:
        if new_id not in self.new_trees:
            obj = self.reader.read(new_id + "^{tree}")
            self.new_trees[new_id] = obj.oid
        return self.new_trees[new_id]

    def bootstrap(self) -> None:
        """Repair mappings that point outside the current target branch.

        Mapped commits that are no longer part of the target branch are
        remapped to the branch commit with the same tree, if any.
        """
        commit_map = self.commit_map
        if not commit_map.name or not commit_map.last:
            return
        if commit_map.last == commit_map.first:
            return
        branch = self.store.try_resolve(self.config.ref("branches", commit_map.name))
        if branch is None:
            return
        records = self.store.list_ancestry(AncestryQuery(include=[branch]))
        by_tree: dict[str, str] = {}
        in_branch = set()
        for record in records:
            in_branch.add(record.id)
            if record.tree is None:
                raise ObjectMissing(f"{record.id}^{{tree}}")
            by_tree.setdefault(record.tree, record.id)
            self.new_trees[record.id] = record.tree
        repaired = 0
        for old_id, new_id in list(commit_map.items()):
            if new_id in in_branch:
                continue
            tree = self._tree_of(new_id)
            replacement = by_tree.get(tree) if tree else None
            if replacement is not None:
                commit_map[old_id] = replacement
                repaired += 1
        if repaired:
            logger.info("repaired %d mappings against %s", repaired, branch)

    def load_frontier(self, start: str | None, end: str, cached: str | None) -> None:
        """Load the trees of the commits the map points to."""
        commit_map = self.commit_map
        records = self.store.list_ancestry(
            AncestryQuery(
                include=[
                    commit_map.get(commit_map.last),
                    commit_map.get(end),
                    commit_map.get(cached),
                ],
                exclude=[commit_map.get(start)],
            )
        )
        for record in records:
            self.new_trees[record.id] = record.tree

    def build_candidates(
        self, start: str | None, end: str, cached: str | None
    ) -> list[PendingCommit]:
        """List the commits of the range that still need rewriting.

        Only commits strictly inside the range are listed. Parents outside
        both the range and the commit map are dropped, so a commit whose
        parents all lie outside becomes a root of the derived history. On
        incremental runs such commits are left out instead, as they are not
        connected to the history already rewritten.
        """
        commit_map = self.commit_map
        records = self.store.list_ancestry(
            AncestryQuery(
                include=[end],
                exclude=[start, cached],
                boundary=False,
                full_history=self.full_history,
            )
        )
        connected: set[str] = set()
        for record in reversed(records):
            if self.skip is not None and self.skip(record):
                logger.info("skipping %s", record.id)
                continue
            commit = PendingCommit(record, list(record.parents))
            self.old_commits[record.id] = commit
            new_id = commit_map.get(record.id)
            if new_id is not None and self._tree_of(new_id):
                commit.new_tree = self._tree_of(new_id)
                continue
            first = commit.parents[0] if commit.parents else None
            if first is not None and first not in commit_map and first not in connected:
                commit.connected = False
            commit.parents = [
                p for p in commit.parents if p in commit_map or p in connected
            ]
            if cached and not commit.parents:
                continue
            connected.add(record.id)
            if self.replaceable is not None and self.replaceable(record):
                commit.is_replaceable = True
            self.pending.append(commit)

        oid: str | None = end
        while oid:
            commit = self.old_commits.get(oid)
            if commit is None:
                break
            commit.is_main_line = True
            oid = commit.parents[0] if commit.connected and commit.parents else None
        return self.pending

    def compute_trees(self, session: TreeMutationSession) -> None:
        """Run the transform for every commit that is not mapped yet."""
        for commit in self.pending:
            if commit.new_tree or commit.id in self.commit_map:
                continue
            commit.new_tree = self.transform(
                session, commit.record, self._base_tree(commit)
            )
            logger.debug("%s -> tree %s", commit.id, commit.new_tree)

    def _base_tree(self, commit: PendingCommit) -> str | None:
        if not commit.parents:
            return None
        first = commit.parents[0]
        new_id = self.commit_map.get(first)
        if new_id is not None:
            return self._tree_of(new_id)
        parent = self.old_commits.get(first)
        return parent.new_tree if parent is not None else None

    def _record_mapping(self, commit: PendingCommit, new_id: str) -> None:
        self.commit_map[commit.id] = new_id
        for alias in commit.aliases:
            self.commit_map[alias] = new_id

    def materialize(self) -> None:
        """Create the new commits, oldest first."""
        commit_map = self.commit_map
        for commit in self.pending:
            if commit.id in commit_map:
                continue
            if commit.new_tree is None:
                warnings.warn(
                    f"ignoring commit without a tree {commit.id}",
                    MissingTreeWarning,
                    stacklevel=2,
                )
                logger.info("ignoring commit without a tree %s", commit.id)
                self.skipped.append(commit.id)
                continue

            new_parents: list[str] = []
            same_as: str | None = None
            for parent in commit.parents:
                new_parent = commit_map.get(parent)
                if new_parent is None:
                    continue
                parent_tree = self._tree_of(new_parent)
                if same_as is None and parent_tree == commit.new_tree:
                    same_as = new_parent
                if new_parent not in new_parents:
                    new_parents.append(new_parent)

            if same_as is not None:
                logger.debug("eliding %s as %s", commit.id, same_as)
                self._record_mapping(commit, same_as)
                continue

            record = self._read_commit(commit.id)
            new_id = self.writer.write(
                record,
                commit.new_tree,
                new_parents,
                self.message_filter(record.message),
            )
            logger.info("%s -> %s %s", commit.id, new_id, " ".join(new_parents))
            if not new_parents and not commit_map.initial:
                commit_map.initial = commit.id
            self.new_trees[new_id] = commit.new_tree
            self._record_mapping(commit, new_id)
            self.created.append(new_id)
            commit_map.last = commit.id

    def _read_commit(self, oid: str) -> CommitRecord:
        obj = self.reader.read(oid)
        if obj.data is None:
            raise ObjectMissing(oid)
        return parse_commit(oid, obj.data)

    def publish(
        self,
        end: str,
        target_ref: str | None = None,
        cache: CommitMapCache | None = None,
    ) -> str | None:
        """Point target_ref at the new head and persist the commit map."""
        commit_map = self.commit_map
        commit_map.last_checked = end
        new_head = commit_map.get(end)
        if target_ref is not None:
            if new_head is None:
                logger.warning("%s is not mapped; not updating %s", end, target_ref)
            else:
                self.store.update_ref(target_ref, new_head)
        if cache is not None and cache.config.cache_write and commit_map.name:
            cache.save(commit_map.name, commit_map)
        return new_head

