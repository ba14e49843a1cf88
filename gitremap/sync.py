# sync.py -- Reconciliation of two mirrors of one history
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

"""Reconciliation of two mirrors of one logical history.

The same logical commit exists with different ids on both sides, so commits
are matched by a token derived from their authorship and subject. Commits of
the mirror that have no counterpart in the main branch are replayed on top
of it and written to a merge ref, leaving the main branch itself untouched.
"""

__all__ = [
    "commit_data_token",
    "squash_remote",
    "sync_remote",
]

import hashlib
import logging
import re
import warnings
from collections.abc import Sequence

from .commitmap import CommitMapCache
from .config import RemapConfig
from .errors import MissingTreeWarning, ObjectMissing
from .objects import CommitRecord
from .remap import MessageFilter
from .store import AncestryQuery
from .transforms import LiftTransform, OverlayTransform

logger = logging.getLogger(__name__)

DEFAULT_MAIN_BRANCH = "refs/remotes/origin/master"
DEFAULT_LOCAL_BRANCH = "refs/heads/master"
DEFAULT_DESCRIPTOR = "package.json"

_HEX_TOKEN = re.compile(r"\b[0-9a-f]{10,}\b")
_WHITESPACE = re.compile(r"\s+")


def commit_data_token(record: CommitRecord, sigils: Sequence[str] = ("+", "#")) -> str:
    """Content-derived identity of a commit, stable across rewrites.

    Covers the author and the subject line. Issue sigils are unified and
    commit ids removed from the subject, since both are rewritten when a
    commit is carried over to the other side.
    """
    if record.author is None:
        raise ObjectMissing(f"author of {record.id}")
    subject = record.message.split("\n", 1)[0]
    for sigil in sigils[1:]:
        subject = subject.replace(sigil, sigils[0])
    subject = _HEX_TOKEN.sub("", subject)
    subject = _WHITESPACE.sub(" ", subject).strip()
    data = "\x00".join(
        [record.author.name, record.author.email, record.author.date, subject]
    )
    return hashlib.sha1(data.encode("utf-8", "surrogateescape")).hexdigest()


def _match(
    origin: list[CommitRecord],
    target: list[CommitRecord],
    sigils: Sequence[str],
) -> tuple[dict[str, CommitRecord], bool]:
    target_by_token: dict[str, CommitRecord] = {}
    for record in target:
        target_by_token.setdefault(commit_data_token(record, sigils), record)
    target_by_id = {r.id: r for r in target}
    origin_by_id = {r.id: r for r in origin}

    map_to: dict[str, CommitRecord] = {}
    for record in origin:
        match = target_by_token.get(commit_data_token(record, sigils))
        if match is not None:
            map_to[record.id] = match
    has_common = bool(map_to)

    # Ancestors of matched commits follow the target's first-parent chain
    for record in origin:
        if record.id not in map_to:
            continue
        stack = [(record, map_to[record.id])]
        while stack:
            child, counterpart = stack.pop()
            if not counterpart.parents:
                continue
            target_parent = target_by_id.get(counterpart.parents[0])
            if target_parent is None:
                continue
            for p in child.parents:
                parent = origin_by_id.get(p)
                if parent is None or parent.id in map_to:
                    continue
                map_to[parent.id] = target_parent
                stack.append((parent, target_parent))
    return map_to, has_common


def sync_remote(
    store,
    name: str,
    *,
    directory: str | None = None,
    remote: str | None = None,
    main_branch: str = DEFAULT_MAIN_BRANCH,
    merge_ref: str | None = None,
    descriptor_path: str = DEFAULT_DESCRIPTOR,
    config: RemapConfig | None = None,
) -> str | None:
    """Replay commits of a mirror that the main branch does not have yet.

    Args:
      store: GitStore holding both histories
      name: Name of the mirror; selects its refs and its commit map
      directory: Directory of the main branch the mirror corresponds to;
        None for a mirror of the whole tree
      remote: Ref of the mirror; defaults to ``<prefix>/remotes/<name>``
      main_branch: Ref of the main branch
      merge_ref: Ref the replayed commits are written to; defaults to
        ``<prefix>/merge/<name>``
      descriptor_path: File not carried over from whole-tree mirrors
      config: Run configuration; defaults to the store's
    Returns:
      Id of the newest replayed commit, or None if nothing was replayed
    """
    config = config or store.config
    remote = remote or config.ref("remotes", name)
    merge_ref = merge_ref or config.ref("merge", name)
    sigils = config.issue_sigils

    origin = store.list_ancestry(AncestryQuery(include=[remote]))
    target = store.list_ancestry(
        AncestryQuery(
            include=[main_branch],
            paths=[directory] if directory else (),
            full_history=True,
        )
    )
    origin_by_id = {r.id: r for r in origin}
    map_to, has_common = _match(origin, target, sigils)
    if not has_common:
        logger.warning("%s and %s have no commit in common", remote, main_branch)
        unsynced: list[CommitRecord] = []
    else:
        unsynced = [r for r in reversed(origin) if r.id not in map_to]
    logger.info("%d commits of %s to replay", len(unsynced), remote)

    if directory:
        transform = LiftTransform(directory)
    else:
        transform = OverlayTransform(store, skip=[descriptor_path])

    new_trees: dict[str, str | None] = {}
    # ids of replayed commits, keyed by mirror id
    replayed: dict[str, str] = {}

    def parent_tree(oid: str) -> str | None:
        if oid in new_trees:
            return new_trees[oid]
        match = map_to.get(oid)
        return match.tree if match is not None else None

    def new_id(oid: str) -> str | None:
        if oid in replayed:
            return replayed[oid]
        match = map_to.get(oid)
        return match.id if match is not None else None

    replay = []
    with store.start_tree_session() as session:
        for record in unsynced:
            if not record.parents or record.parents[0] not in origin_by_id:
                continue
            base_tree = parent_tree(record.parents[0])
            new_trees[record.id] = transform(session, record, base_tree)
            replay.append(record)

    def lookup(token: str) -> str | None:
        return new_id(token) if token in origin_by_id else None

    message_filter = MessageFilter(lookup, sigils)
    head = None
    for record in replay:
        tree = new_trees[record.id]
        if tree is None:
            warnings.warn(
                f"ignoring commit without a tree {record.id}",
                MissingTreeWarning,
                stacklevel=2,
            )
            continue
        new_parents: list[str] = []
        same_as = None
        for p in record.parents:
            parent = new_id(p)
            if parent is None:
                continue
            if same_as is None and parent_tree(p) == tree:
                same_as = parent
            if parent not in new_parents:
                new_parents.append(parent)
        if same_as is not None:
            replayed[record.id] = same_as
            new_trees[record.id] = tree
            continue
        head = store.write_commit(
            tree,
            new_parents,
            message_filter(record.message),
            author=record.author,
            committer=record.committer,
        )
        logger.info("%s | %s %s", record.id, head, " ".join(new_parents))
        replayed[record.id] = head

    if replay:
        newest = new_id(replay[-1].id)
        if newest is not None:
            store.update_ref(merge_ref, newest)
            head = newest

    _record_reverse_mappings(store, name, origin, new_id, config)
    return head


def _record_reverse_mappings(store, name, origin, new_id, config) -> None:
    cache = CommitMapCache(store, config)
    commit_map = cache.load(name)
    for record in reversed(origin):
        target_id = new_id(record.id)
        if target_id is None or target_id in commit_map:
            continue
        commit_map[target_id] = record.id
        commit_map.last = target_id
        if not commit_map.first:
            commit_map.first = target_id
        if not commit_map.initial and not record.parents:
            commit_map.initial = target_id
    if config.cache_write:
        cache.save(name, commit_map)


def squash_remote(
    store,
    name: str,
    directory: str | None,
    *,
    remote: str | None = None,
    local: str = DEFAULT_LOCAL_BRANCH,
    merge_ref: str | None = None,
    descriptor_path: str = DEFAULT_DESCRIPTOR,
    config: RemapConfig | None = None,
) -> str:
    """Import the newest state of a mirror as a single commit.

    Returns:
      Id of the new commit, whose only parent is the local branch
    """
    config = config or store.config
    remote = remote or config.ref("remotes", name)
    merge_ref = merge_ref or config.ref("merge", name)
    remote_id, local_id, local_tree = store.resolve_refs(
        [remote, local, local + "^{tree}"]
    )
    head = store.list_ancestry(
        AncestryQuery(include=[remote_id], boundary=False, max_count=1)
    )[0]
    if directory:
        transform = LiftTransform(directory)
    else:
        transform = OverlayTransform(store, skip=[descriptor_path])
    with store.start_tree_session() as session:
        tree = transform(session, head, local_tree)
    if tree is None:
        raise ObjectMissing(f"{head.id}^{{tree}}")
    new_id = store.write_commit(
        tree, [local_id], head.message, author=head.author, committer=head.committer
    )
    store.update_ref(merge_ref, new_id)
    logger.info("squashed %s onto %s as %s", head.id, local_id, new_id)
    return new_id
