# utils.py -- Test utilities for gitremap
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

"""Utility classes common to gitremap tests.

MemoryStore implements the subset of GitStore the engine uses on top of
plain dictionaries, including a tree mutation session that models the
fast-import operations gitremap issues.
"""

import dataclasses
import hashlib

from gitremap.batch import BatchObject
from gitremap.config import RemapConfig
from gitremap.errors import AmbiguousReferenceError, ObjectMissing
from gitremap.objects import EMPTY_TREE, CommitRecord, Identity
from gitremap.store import TreeEntry

# Plain files are very frequently used in tests, so let the mode be very short.
F = "100644"

AUTHOR = Identity.parse("Test Author <author@example.com> 1500000000 +0000")


def _digest(*parts):
    return hashlib.sha1(repr(parts).encode("utf-8")).hexdigest()


def _subtree(entries, path):
    if not path:
        return dict(entries)
    prefix = path + "/"
    return {p[len(prefix) :]: v for p, v in entries.items() if p.startswith(prefix)}


class MemoryStore:
    """In-memory stand-in for GitStore."""

    def __init__(self, config=None):
        self.config = config or RemapConfig()
        self.blobs = {}
        self.trees = {EMPTY_TREE: {}}
        self.commits = {}
        self.refs = {}
        self.written = []
        self.git_config = {}
        self._clock = AUTHOR.time

    # Building blocks

    def write_blob(self, data):
        if isinstance(data, str):
            data = data.encode("utf-8")
        oid = hashlib.sha1(b"blob %d\x00" % len(data) + data).hexdigest()
        self.blobs[oid] = data
        return oid

    def add_tree(self, entries):
        """Register a tree; entries map a path to (mode, blob id)."""
        if not entries:
            return EMPTY_TREE
        oid = _digest("tree", sorted(entries.items()))
        self.trees[oid] = dict(entries)
        return oid

    def tree_of_files(self, files):
        """Register a tree from a mapping of path to file contents."""
        return self.add_tree({p: (F, self.write_blob(c)) for p, c in files.items()})

    def add_commit(self, files, parents=(), message="change", author=None):
        """Add an existing commit to the store and return its id.

        files is either a mapping of path to contents or a tree id.
        """
        tree = files if isinstance(files, str) else self.tree_of_files(files)
        if author is None:
            self._clock += 60
            author = dataclasses.replace(AUTHOR, time=self._clock)
        oid = _digest("commit", tree, tuple(parents), message, str(author))
        self.commits[oid] = CommitRecord(
            id=oid,
            tree=tree,
            parents=list(parents),
            author=author,
            committer=author,
            message=message,
        )
        return oid

    def add_linear(self, states, messages=None, base=None):
        """Add a chain of commits, one per state; returns their ids."""
        ids = []
        parent = base
        for i, files in enumerate(states):
            message = messages[i] if messages else f"commit {i + 1}"
            parent = self.add_commit(files, [parent] if parent else [], message)
            ids.append(parent)
        return ids

    def files(self, treeish):
        """Contents of a tree (or of a commit's tree) as path -> text."""
        tree = self._tree_id(treeish)
        return {
            p: self.blobs[oid].decode("utf-8")
            for p, (_, oid) in self.trees[tree].items()
        }

    # GitStore interface

    def _tree_id(self, treeish):
        if treeish.endswith("^{tree}"):
            treeish = treeish[: -len("^{tree}")]
        treeish = self.refs.get(treeish, treeish)
        if treeish in self.trees:
            return treeish
        if treeish in self.commits:
            return self.commits[treeish].tree
        raise ObjectMissing(treeish)

    def try_resolve(self, expression):
        if expression.endswith("^{tree}"):
            try:
                return self._tree_id(expression)
            except ObjectMissing:
                return None
        oid = self.refs.get(expression, expression)
        if oid in self.commits:
            return oid
        return None

    def resolve_refs(self, expressions):
        resolved = [self.try_resolve(e) for e in expressions if e]
        if None in resolved or len(resolved) != len(expressions):
            raise AmbiguousReferenceError(expressions, [r for r in resolved if r])
        return resolved

    def read_object(self, name):
        treeish, sep, path = name.partition(":")
        if sep:
            try:
                entries = self.trees[self._tree_id(treeish)]
            except ObjectMissing:
                raise ObjectMissing(name) from None
            if path not in entries:
                raise ObjectMissing(name)
            return "blob", self.blobs[entries[path][1]]
        oid = self.refs.get(name, name)
        if oid in self.commits:
            return "commit", self.raw_commit(oid)
        if oid in self.blobs:
            return "blob", self.blobs[oid]
        raise ObjectMissing(name)

    def raw_commit(self, oid):
        record = self.commits[oid]
        lines = [f"tree {record.tree}"]
        lines.extend(f"parent {p}" for p in record.parents)
        lines.append(f"author {record.author}")
        lines.append(f"committer {record.committer}")
        return ("\n".join(lines) + "\n\n" + record.message).encode("utf-8")

    def write_commit(self, tree, parents, message, author=None, committer=None):
        author = author or AUTHOR
        oid = _digest("commit", tree, tuple(parents), message, str(author))
        self.commits[oid] = CommitRecord(
            id=oid,
            tree=tree,
            parents=list(parents),
            author=author,
            committer=committer or author,
            message=message,
        )
        self.written.append(oid)
        return oid

    def update_ref(self, ref, oid):
        self.refs[ref] = oid

    def _ancestors(self, tips):
        seen = set()
        stack = [self.refs.get(t, t) for t in tips if t]
        while stack:
            oid = stack.pop()
            if oid in seen or oid not in self.commits:
                continue
            seen.add(oid)
            stack.extend(self.commits[oid].parents)
        return seen

    def list_ancestry(self, query):
        include = [self.refs.get(c, c) for c in query.include if c]
        if not include:
            return []
        excluded = self._ancestors(query.exclude)
        reachable = self._ancestors(include) - excluded
        selected = reachable
        if query.paths:
            # Commits that do not touch the paths are walked through, not listed
            selected = {
                oid
                for oid in reachable
                if self._touches(oid, [p.rstrip("/") for p in query.paths])
            }
        order = []
        visited = set()

        def visit(oid):
            if oid in visited or oid not in reachable:
                return
            visited.add(oid)
            parents = self.commits[oid].parents
            if query.first_parent:
                parents = parents[:1]
            for parent in parents:
                visit(parent)
            if oid in selected:
                order.append(oid)

        for oid in include:
            visit(oid)
        records = [dataclasses.replace(self.commits[o]) for o in reversed(order)]
        if query.boundary:
            boundary = []
            for oid in order:
                for parent in self.commits[oid].parents:
                    if parent in excluded and parent not in boundary:
                        boundary.append(parent)
            records.extend(
                dataclasses.replace(self.commits[o], boundary=True) for o in boundary
            )
        if query.max_count is not None:
            records = records[: query.max_count]
        return records

    def _touches(self, oid, paths):
        record = self.commits[oid]
        mine = self.trees[record.tree]
        for path in paths:
            current = _subtree(mine, path)
            if not record.parents:
                if current:
                    return True
                continue
            for parent in record.parents:
                theirs = self.trees[self.commits[parent].tree]
                if _subtree(theirs, path) != current:
                    return True
        return False

    def ls_tree(self, treeish):
        entries = self.trees[self._tree_id(treeish)]
        return [
            TreeEntry(mode, "blob", oid, p) for p, (mode, oid) in sorted(entries.items())
        ]

    def ls_tree_names(self, treeish):
        return sorted(self.trees[self._tree_id(treeish)])

    def config_section(self, section):
        return dict(self.git_config.get(section, {}))

    def start_tree_session(self):
        return MemorySession(self)

    def start_batch_reader(self):
        return MemoryReader(self)


class MemorySession:
    """Models the fast-import operations of TreeMutationSession.

    Resets only take effect when the session finishes, as with fast-import.
    Commits created by the session are only known by mark until then, so
    naming them by id fails.
    """

    def __init__(self, store):
        self.store = store
        self.current = None
        self.commit = None
        self.marks = {}
        self.resets = []
        self.deleted = []
        self.finished = False
        self.scratch_commits = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.finish()

    def _resolve(self, ref):
        if ref.startswith(":"):
            return self.marks[ref[1:]]
        if not self.finished and ref in self.marks.values():
            raise ValueError(f"Not a valid commit: {ref}")
        return ref

    def finish(self):
        resolved = [(ref, self._resolve(oid)) for ref, oid in self.resets]
        self.finished = True
        for ref, oid in resolved:
            self.store.update_ref(ref, oid)

    def begin_scratch_commit(self, base=None, message=b"tmp"):
        assert self.current is None, "commit already in progress"
        self.scratch_commits += 1
        self.current = dict(self.store.trees[self.store._tree_id(base)]) if base else {}

    def begin_commit(self, mark, message, author, committer, parents):
        assert self.current is None, "commit already in progress"
        parents = [self._resolve(p) for p in parents if p]
        first = self.store.commits.get(parents[0]) if parents else None
        self.current = dict(self.store.trees[first.tree]) if first else {}
        self.commit = (str(mark), message, author, committer, parents)

    def set_subtree(self, path, tree_id):
        entries = self.store.trees[tree_id]
        if not path:
            self.current = dict(entries)
            return
        self._remove(path)
        for p, v in entries.items():
            self.current[f"{path}/{p}"] = v

    def set_file(self, path, mode, blob_id):
        self._remove(path)
        self.current[path] = (mode, blob_id)

    def delete_path(self, path):
        self.deleted.append(path)
        self._remove(path)

    def _remove(self, path):
        for p in list(self.current):
            if p == path or p.startswith(path + "/"):
                del self.current[p]

    def end_commit(self):
        if self.commit is not None:
            mark, message, author, committer, parents = self.commit
            tree = self.store.add_tree(self.current)
            self.marks[mark] = self.store.write_commit(
                tree, parents, message, author=author, committer=committer
            )
            self.commit = None
        self.current = None

    def query_tree(self, callback=None, *, path="", dataref=None):
        if dataref is not None:
            entries = self.store.trees[self.store._tree_id(dataref)]
        else:
            entries = self.current
        sub = _subtree(entries, path)
        if sub or not path:
            result = self.store.add_tree(sub)
        else:
            result = None
        if callback is not None:
            callback(result)
        return result

    def get_mark(self, mark, callback=None):
        result = self.marks.get(str(mark))
        if callback is not None:
            callback(result)
        return result

    def reset(self, ref, from_):
        self.resets.append((ref, from_))


class MemoryReader:
    """Stand-in for BatchObjectReader reading from a MemoryStore."""

    def __init__(self, store):
        self.store = store
        self.requests = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    def read(self, name):
        self.requests.append(name)
        if name.endswith("^{tree}"):
            try:
                oid = self.store._tree_id(name)
            except ObjectMissing:
                return BatchObject(name=name, header=f"{name} missing", type="missing")
            return BatchObject(name=name, header="", type="tree", oid=oid, data=b"")
        try:
            kind, data = self.store.read_object(name)
        except ObjectMissing:
            return BatchObject(name=name, header=f"{name} missing", type="missing")
        oid = hashlib.sha1(data).hexdigest()
        if kind == "commit":
            oid = self.store.refs.get(name, name)
        return BatchObject(
            name=name, header="", type=kind, oid=oid, size=len(data), data=data
        )
