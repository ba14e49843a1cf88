# filter_branch.py -- Whole-branch history filtering
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

"""Whole-branch history filtering.

Rewrites the full history of a branch: every tree is relocated under a root
path (optionally on top of a fixed root tree), excluded paths are removed,
commits squashed in by ``git subtree`` are dropped and chains of automated
version bumps are collapsed into the commit that follows them.
"""

__all__ = [
    "DEFAULT_TARGET",
    "DEFAULT_VERSION_BUMP",
    "filter_branch",
    "is_subtree_squash",
    "read_commit_actions",
    "read_exclude_list",
]

import logging
import re
from collections.abc import Mapping, Sequence

from .commitmap import CommitMap
from .config import RemapConfig
from .objects import CommitRecord
from .remap import HistoryRemapper, ImportCommitWriter
from .transforms import RelocateTransform

logger = logging.getLogger(__name__)

DEFAULT_TARGET = "refs/heads/rebased"
DEFAULT_VERSION_BUMP = r"^(c9-version-bump Update version to|c9-auto-bump) [\d.]+"

SQUASH_ACTION = "squash"
_KNOWN_ACTIONS = (SQUASH_ACTION,)

_SUBTREE_DIR = re.compile(r"^git-subtree-dir:", re.MULTILINE)


def read_exclude_list(path: str) -> list[str]:
    """Read a list of paths to exclude.

    One path per line; text after ``#`` at the start of a line is a comment
    and trailing slashes are ignored.
    """
    excludes = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            line = line.rstrip("/")
            if line:
                excludes.append(line)
    return excludes


def read_commit_actions(path: str) -> dict[str, str]:
    """Read per-commit actions (``<commit id> <action>`` per line).

    A missing file yields no actions.
    """
    actions: dict[str, str] = {}
    try:
        f = open(path, encoding="utf-8")
    except FileNotFoundError:
        return actions
    with f:
        for line in f:
            fields = line.split()
            if len(fields) < 2:
                continue
            oid, action = fields[0], fields[1]
            if action not in _KNOWN_ACTIONS:
                logger.warning("unknown action %s for %s", action, oid)
                continue
            actions[oid] = action
    return actions


def is_subtree_squash(record: CommitRecord) -> bool:
    """Whether a commit is a root commit created by ``git subtree --squash``."""
    return (
        not record.parents
        and record.message.startswith("Squashed")
        and _SUBTREE_DIR.search(record.message) is not None
    )


def filter_branch(
    store,
    branch: str,
    *,
    root_path: str = "",
    root_commit: str | None = None,
    excludes: Sequence[str] = (),
    commit_actions: Mapping[str, str] | None = None,
    version_bump_pattern: str | None = DEFAULT_VERSION_BUMP,
    target_ref: str = DEFAULT_TARGET,
    config: RemapConfig | None = None,
) -> str | None:
    """Rewrite the whole history of branch into target_ref.

    Args:
      store: GitStore holding the branch
      branch: Branch to rewrite
      root_path: Directory every tree is moved to
      root_commit: Commit whose tree every relocated tree is placed into
      excludes: Paths, relative to the original trees, to remove
      commit_actions: Per-commit actions; ``squash`` folds a commit into
        its child
      version_bump_pattern: Regular expression matching the messages of
        commits to fold into their child; None disables it
      target_ref: Ref pointed at the rewritten head
      config: Run configuration; defaults to the store's
    Returns:
      The new id of the branch head
    """
    config = config or store.config
    commit_actions = dict(commit_actions or {})
    (head,) = store.resolve_refs([branch])
    root_tree = None
    if root_commit:
        (root_tree,) = store.resolve_refs([root_commit + "^{tree}"])

    bump = re.compile(version_bump_pattern) if version_bump_pattern else None

    def replaceable(record: CommitRecord) -> bool:
        if commit_actions.get(record.id) == SQUASH_ACTION:
            return True
        return bump is not None and bump.match(record.message) is not None

    transform = RelocateTransform(root_path, root_tree, excludes)
    with ImportCommitWriter(store.start_tree_session) as writer:
        remapper = HistoryRemapper(
            store,
            transform,
            CommitMap(),
            config=config,
            writer=writer,
            message_filter=lambda message: message,
            replaceable=replaceable,
            skip=is_subtree_squash,
            full_history=True,
        )
        new_head = remapper.run(None, head)
        if new_head is not None:
            writer.reset(target_ref, new_head)
    logger.info(
        "rewrote %d commits of %s into %s (%d written)",
        len(remapper.commit_map),
        branch,
        target_ref,
        len(remapper.created),
    )
    return new_head
