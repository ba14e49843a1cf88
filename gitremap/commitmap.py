# commitmap.py -- Persisted mapping from old to new commit ids
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

"""Persisted mapping from old to new commit ids.

The map of a given name is stored as the blob ``<name>/commitMap.txt`` in
the tree of the cache ref (``<prefix>/index``). Every line has the form
``key:value``; besides the ``oldId:newId`` entries the watermark keys
``first``, ``last``, ``lastChecked``, ``initial`` and ``name`` are stored
the same way.
"""

__all__ = [
    "CommitMap",
    "CommitMapCache",
]

import bisect
import logging
import time
from collections.abc import Iterator

from .config import RemapConfig
from .errors import ObjectMissing
from .objects import EMPTY_TREE, Identity

logger = logging.getLogger(__name__)

# Reserved keys, in the order they are serialized.
_WATERMARKS = (
    ("first", "first"),
    ("last", "last"),
    ("lastChecked", "last_checked"),
    ("initial", "initial"),
    ("name", "name"),
)
_WATERMARK_ATTRS = dict(_WATERMARKS)

CACHE_FILENAME = "commitMap.txt"


class CommitMap:
    """Mapping from old commit id to new commit id, plus watermarks.

    Attributes:
      first: Exclusive lower bound of the range, if one was given
      last: Newest old id whose mapping is recorded
      last_checked: Newest old id confirmed present in the target branch
      initial: Root commit of the mapped history, if known
      name: Name the map is stored under
    """

    def __init__(self, name: str | None = None) -> None:
        self.name = name
        self.first: str | None = None
        self.last: str | None = None
        self.last_checked: str | None = None
        self.initial: str | None = None
        self._entries: dict[str, str] = {}
        self._sorted: list[str] | None = None

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} {self.name!r} entries={len(self._entries)} "
            f"last={self.last!r}>"
        )

    def __contains__(self, oid: object) -> bool:
        return oid in self._entries

    def __getitem__(self, oid: str) -> str:
        return self._entries[oid]

    def __setitem__(self, oid: str, new_id: str) -> None:
        if oid not in self._entries:
            self._sorted = None
        self._entries[oid] = new_id

    def __delitem__(self, oid: str) -> None:
        del self._entries[oid]
        self._sorted = None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CommitMap):
            return NotImplemented
        return self.to_text() == other.to_text()

    def get(self, oid: str | None, default: str | None = None) -> str | None:
        if oid is None:
            return default
        return self._entries.get(oid, default)

    def items(self):
        return self._entries.items()

    def values(self):
        return self._entries.values()

    def lookup_prefix(self, prefix: str) -> str | None:
        """Find the old id starting with prefix.

        Returns:
          The full old id, or None if no entry or more than one entry
          starts with prefix
        """
        if self._sorted is None:
            self._sorted = sorted(self._entries)
        i = bisect.bisect_left(self._sorted, prefix)
        if i == len(self._sorted) or not self._sorted[i].startswith(prefix):
            return None
        if i + 1 < len(self._sorted) and self._sorted[i + 1].startswith(prefix):
            return None
        return self._sorted[i]

    def to_text(self) -> str:
        """Serialize deterministically: watermarks first, then sorted entries."""
        lines = []
        for key, attr in _WATERMARKS:
            value = getattr(self, attr)
            if value:
                lines.append(f"{key}:{value}")
        for oid in sorted(self._entries):
            lines.append(f"{oid}:{self._entries[oid]}")
        return "\n".join(lines)

    @classmethod
    def from_text(cls, text: str, name: str | None = None) -> "CommitMap":
        commit_map = cls(name)
        for line in text.split("\n"):
            key, sep, value = line.strip().partition(":")
            if not sep or not key:
                continue
            attr = _WATERMARK_ATTRS.get(key)
            if attr is None:
                commit_map[key] = value
            elif value:
                setattr(commit_map, attr, value)
        if name is not None:
            commit_map.name = name
        return commit_map


class CommitMapCache:
    """Loads and saves commit maps inside the repository.

    Only one writer per cache name may be active at a time.
    """

    def __init__(self, store, config: RemapConfig | None = None) -> None:
        """Initialize a CommitMapCache.

        Args:
          store: GitStore the cache lives in
          config: Run configuration; defaults to the store's
        """
        self.store = store
        self.config = config or store.config

    @staticmethod
    def path(name: str) -> str:
        """Path of the cache blob for name within the cache tree."""
        return f"{name}/{CACHE_FILENAME}"

    def load(self, name: str) -> CommitMap:
        """Load the map stored under name; absence yields an empty map."""
        if not self.config.cache:
            return CommitMap(name)
        try:
            _, data = self.store.read_object(
                f"{self.config.index_ref}:{self.path(name)}"
            )
        except ObjectMissing:
            logger.debug("no cached commit map for %s", name)
            return CommitMap(name)
        commit_map = CommitMap.from_text(data.decode("utf-8"), name)
        logger.debug("loaded %r", commit_map)
        return commit_map

    def _admin_identities(self) -> tuple[Identity, Identity]:
        now = int(time.time())
        offset = time.localtime(now).tm_gmtoff
        author = Identity(
            self.config.admin_name, self.config.admin_email, now, offset
        )
        committer = Identity(
            self.config.admin_name,
            self.config.admin_committer_email or "",
            now,
            offset,
        )
        return author, committer

    def save(self, name: str, commit_map: CommitMap) -> str | None:
        """Persist commit_map under name.

        A cache commit is only created if the cache tree actually changes.

        Returns:
          The id of the new cache commit, or None if nothing changed
        """
        blob = self.store.write_blob(commit_map.to_text())
        parent = self.store.try_resolve(self.config.index_ref)
        parent_tree = self.store.try_resolve(self.config.index_ref + "^{tree}")

        with self.store.start_tree_session() as session:
            session.begin_scratch_commit()
            session.set_subtree("", parent_tree or EMPTY_TREE)
            session.set_file(self.path(name), "100644", blob)
            tree = session.query_tree()
            session.end_commit()

        if tree == parent_tree:
            logger.debug("commit map %s unchanged", name)
            return None

        last = commit_map.last or ""
        message = f"subtree update {name} to {last}\n      {commit_map.get(last) or ''}"
        author, committer = self._admin_identities()
        commit = self.store.write_commit(
            tree,
            [parent] if parent else [],
            message,
            author=author,
            committer=committer,
        )
        self.store.update_ref(self.config.index_ref, commit)
        logger.info("saved commit map %s (%d entries)", name, len(commit_map))
        return commit
