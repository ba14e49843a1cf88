# transforms.py -- Tree transforms applied to rewritten commits
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

"""Tree transforms applied to rewritten commits.

A transform is called with the tree mutation session, the commit being
rewritten and the new tree of its first parent (if known), and returns the
id of the new tree, or None if the commit has no tree in the derived
history.
"""

__all__ = [
    "LiftTransform",
    "OverlayTransform",
    "PublicTreeTransform",
    "RelocateTransform",
    "SubtreeTransform",
    "TreeTransform",
]

import logging
from collections.abc import Callable, Sequence
from typing import Protocol

from .classify import PathClassifier, RulesetProvider
from .objects import EMPTY_TREE, CommitRecord
from .session import TreeMutationSession

logger = logging.getLogger(__name__)

DescriptorTransform = Callable[[str, str | None], str]


class TreeTransform(Protocol):
    def __call__(
        self,
        session: TreeMutationSession,
        commit: CommitRecord,
        base_tree: str | None,
    ) -> str | None: ...


class SubtreeTransform:
    """Extracts the tree of a subdirectory."""

    def __init__(self, directory: str) -> None:
        self.directory = directory.strip("/")

    def __call__(self, session, commit, base_tree):
        return session.query_tree(path=self.directory, dataref=commit.id)


class PublicTreeTransform:
    """Deletes the paths a ruleset classifies as private.

    Optionally rewrites a project descriptor file through an opaque content
    transform, called with the new descriptor text and the descriptor text
    of the base tree.
    """

    def __init__(
        self,
        store,
        rulesets: RulesetProvider,
        *,
        strict: bool = True,
        reader=None,
        descriptor_path: str | None = None,
        descriptor_transform: DescriptorTransform | None = None,
    ) -> None:
        self.store = store
        self.rulesets = rulesets
        self.strict = strict
        self.reader = reader
        self.descriptor_path = descriptor_path
        self.descriptor_transform = descriptor_transform

    def __call__(self, session, commit, base_tree):
        classifier = PathClassifier(self.rulesets.ruleset_for(commit.id), self.strict)
        deletes = classifier.classify(self.store.ls_tree_names(commit.id))
        session.begin_scratch_commit(base=commit.id)
        for path in deletes:
            session.delete_path(path.rstrip("/"))
        if self.descriptor_path and self.descriptor_transform:
            self._rewrite_descriptor(session, commit, base_tree)
        tree = session.query_tree()
        session.end_commit()
        return tree

    def _read_text(self, treeish: str) -> str | None:
        if self.reader is None:
            return None
        return self.reader.read(f"{treeish}:{self.descriptor_path}").text()

    def _rewrite_descriptor(self, session, commit, base_tree):
        assert self.descriptor_path and self.descriptor_transform
        new_text = self._read_text(commit.id)
        if new_text is None:
            return
        old_text = self._read_text(base_tree) if base_tree else None
        blob = self.store.write_blob(self.descriptor_transform(new_text, old_text))
        session.set_file(self.descriptor_path, "100644", blob)


class LiftTransform:
    """Places the commit's tree at a subdirectory of the base tree."""

    def __init__(self, directory: str) -> None:
        self.directory = directory.strip("/")

    def __call__(self, session, commit, base_tree):
        session.begin_scratch_commit()
        session.set_subtree("", base_tree or EMPTY_TREE)
        subtree = session.query_tree(path="", dataref=commit.id)
        if subtree is None:
            session.end_commit()
            return None
        session.set_subtree(self.directory, subtree)
        tree = session.query_tree()
        session.end_commit()
        return tree


class OverlayTransform:
    """Writes every file of the commit's tree over the base tree."""

    def __init__(self, store, skip: Sequence[str] = ()) -> None:
        self.store = store
        self.skip = frozenset(skip)

    def __call__(self, session, commit, base_tree):
        entries = self.store.ls_tree(commit.id)
        session.begin_scratch_commit()
        session.set_subtree("", base_tree or EMPTY_TREE)
        for entry in entries:
            if entry.path in self.skip:
                continue
            session.set_file(entry.path, entry.mode, entry.id)
        tree = session.query_tree()
        session.end_commit()
        return tree


class RelocateTransform:
    """Moves the commit's tree under a root path and drops excluded paths.

    Args:
      root_path: Directory the tree is placed at; empty for the root
      root_tree: Optional tree the relocated tree is placed into
      excludes: Paths, relative to the relocated tree, to delete
    """

    def __init__(
        self,
        root_path: str = "",
        root_tree: str | None = None,
        excludes: Sequence[str] = (),
    ) -> None:
        self.root_path = root_path.strip("/")
        self.root_tree = root_tree
        self.excludes = list(excludes)

    def _full_path(self, path: str) -> str:
        if self.root_path:
            return f"{self.root_path}/{path}"
        return path

    def __call__(self, session, commit, base_tree):
        session.begin_scratch_commit()
        session.set_subtree("", self.root_tree or EMPTY_TREE)
        session.set_subtree(self.root_path, commit.tree)
        for path in self.excludes:
            session.delete_path(self._full_path(path))
        tree = session.query_tree()
        session.end_commit()
        return tree
