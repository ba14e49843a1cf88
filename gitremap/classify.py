# classify.py -- Declarative path classification
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

"""Classification of tree paths by a declarative ruleset.

A ruleset maps path segments to a status::

    {
        "README.md": 0,
        "secrets/": 1,
        "plugins/": {
            "internal*": 1,
            "*": 0
        },
        "docs/drafts/": 1
    }

``0`` keeps a path, ``1`` drops it, a nested mapping applies to the
contents of a directory. Directory keys end with ``/``; keys containing
``/`` elsewhere are expanded into nested tables. Keys ending with ``*`` are
wildcards, matched case-insensitively against the names not covered by an
exact key; drop wildcards take precedence over keep wildcards.
"""

__all__ = [
    "DROP",
    "KEEP",
    "PathClassifier",
    "RuleTable",
    "RulesetProvider",
    "StaticRulesetProvider",
    "TreeRulesetProvider",
    "build_path_trie",
    "load_ruleset",
]

import json
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Protocol, Union

from .errors import ClassificationError, InvalidRulesetError
from .objects import unquote_path

logger = logging.getLogger(__name__)

KEEP = 0
DROP = 1

_STATUS_NAMES = {KEEP: "keep", DROP: "drop"}

PathTrie = dict[str, Union["PathTrie", int]]


def _is_wildcard(key: str) -> bool:
    return key.endswith("*")


def _status(key: str, value: object) -> int | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int) and value in (KEEP, DROP):
        return value
    if _is_wildcard(key):
        raise InvalidRulesetError(
            f"* patterns must have value of 0 or 1, value of {key} is {value!r}"
        )
    return None


class RuleTable:
    """One level of a ruleset.

    Attributes:
      rules: Exact rules, mapping a name (directories with a trailing
        ``/``) to KEEP, DROP or a nested RuleTable
      wildcards: Wildcard keys, in document order, with their status
    """

    def __init__(self) -> None:
        self.rules: dict[str, int | RuleTable] = {}
        self.wildcards: list[tuple[str, int]] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_mapping()!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RuleTable):
            return NotImplemented
        return self.to_mapping() == other.to_mapping()

    def keys(self) -> list[str]:
        """All keys of this level, in document order."""
        return list(self.rules) + [k for k, _ in self.wildcards]

    def _subtable(self, name: str) -> "RuleTable":
        existing = self.rules.get(name)
        if isinstance(existing, RuleTable):
            return existing
        if existing is not None:
            raise InvalidRulesetError(
                f"{name} has a status and nested rules at the same time"
            )
        table = RuleTable()
        self.rules[name] = table
        return table

    def add(self, key: str, value: object) -> None:
        """Add a rule, expanding full paths into nested tables.

        Raises:
          InvalidRulesetError: for values that are not a status or a mapping
        """
        if "*" in key and ("/" in key or not _is_wildcard(key)):
            raise InvalidRulesetError(
                f"invalid pattern {key}: * patterns must be names ending with *"
            )
        head, sep, rest = key.partition("/")
        if sep and rest:
            self._subtable(head + "/").add(rest, value)
            return
        if isinstance(value, Mapping):
            if not key.endswith("/"):
                raise InvalidRulesetError(
                    f"nested rules for {key} require a directory key ending in /"
                )
            table = self._subtable(key)
            for k, v in value.items():
                table.add(k, v)
            return
        status = _status(key, value)
        if status is None:
            raise InvalidRulesetError(f"invalid rule value for {key}: {value!r}")
        if _is_wildcard(key):
            self.wildcards.append((key, status))
        elif isinstance(self.rules.get(key), RuleTable):
            raise InvalidRulesetError(
                f"{key} has a status and nested rules at the same time"
            )
        else:
            self.rules[key] = status

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object]) -> "RuleTable":
        """Build a RuleTable from a (possibly nested) mapping."""
        if not isinstance(mapping, Mapping):
            raise InvalidRulesetError(
                f"ruleset must be a mapping, not {type(mapping).__name__}"
            )
        table = cls()
        for key, value in mapping.items():
            if not isinstance(key, str) or not key:
                raise InvalidRulesetError(f"invalid rule key {key!r}")
            table.add(key, value)
        return table

    def to_mapping(self) -> dict[str, object]:
        result: dict[str, object] = {}
        for key, value in self.rules.items():
            result[key] = value.to_mapping() if isinstance(value, RuleTable) else value
        for key, status in self.wildcards:
            result[key] = status
        return result

    def pattern(self, status: int) -> re.Pattern[str] | None:
        """Combined regular expression of the wildcards with status."""
        alternatives = [
            "^" + ".*".join(re.escape(piece) for piece in key.split("*"))
            for key, value in self.wildcards
            if value == status
        ]
        if not alternatives:
            return None
        return re.compile("|".join(alternatives), re.IGNORECASE)


def build_path_trie(listing: Iterable[str]) -> PathTrie:
    """Build a trie of path segments from a flat listing of file paths.

    Directory nodes are keyed by their name with a trailing ``/``; quoted
    entries are unquoted.
    """
    root: PathTrie = {}
    for path in listing:
        path = unquote_path(path.rstrip("\n"))
        if not path:
            continue
        parts = path.split("/")
        node = root
        for part in parts[:-1]:
            child = node.setdefault(part + "/", {})
            assert isinstance(child, dict)
            node = child
        node[parts[-1]] = 1
    return root


class PathClassifier:
    """Turns a RuleTable into the list of paths to delete from a tree."""

    def __init__(self, rules: RuleTable, strict: bool = True) -> None:
        """Initialize a PathClassifier.

        Args:
          rules: Ruleset to apply
          strict: Whether names not covered by the ruleset are fatal; when
            False they are logged and dropped
        """
        self.rules = rules
        self.strict = strict

    def classify(self, listing: Iterable[str]) -> list[str]:
        """Classify a recursive listing of file paths.

        Returns:
          Sorted list of paths to delete; directories end with ``/``
        Raises:
          ClassificationError: in strict mode, if a name is not covered
        """
        result: set[str] = set()
        self._classify_level("", self.rules, build_path_trie(listing), result)
        return sorted(result)

    def _classify_level(
        self, base: str, table: RuleTable, files: PathTrie, result: set[str]
    ) -> None:
        files = dict(files)
        unmatched = []
        for name, rule in table.rules.items():
            if rule == DROP:
                if name in files:
                    result.add(base + name)
                else:
                    unmatched.append(name)
            elif isinstance(rule, RuleTable):
                node = files.get(name)
                self._classify_level(
                    base + name,
                    rule,
                    node if isinstance(node, dict) else {},
                    result,
                )
            files.pop(name, None)

        rest = list(files)
        drop_pattern = table.pattern(DROP)
        keep_pattern = table.pattern(KEEP)
        hint = None

        if rest and unmatched and self.strict:
            for name in unmatched:
                if any(r.startswith(name + ".") for r in rest):
                    drop_pattern = keep_pattern = None
                    hint = (
                        f"{name} is not present but a file with the same stem "
                        "is; did you forget the file extension?"
                    )
                    break

        if drop_pattern is not None:
            remaining = []
            for name in rest:
                if drop_pattern.match(name):
                    result.add(base + name)
                else:
                    remaining.append(name)
            rest = remaining

        if keep_pattern is not None:
            rest = [name for name in rest if not keep_pattern.match(name)]

        if not rest:
            return
        if not self.strict:
            logger.warning("ignoring %s in ./%s", ", ".join(rest), base)
            result.update(base + name for name in rest)
            return
        patterns = [
            p.pattern for p in (drop_pattern, keep_pattern) if p is not None
        ]
        raise ClassificationError(base, rest, patterns, table.keys(), hint=hint)


class RulesetProvider(Protocol):
    """Supplies the ruleset to apply to a given commit or tree."""

    def ruleset_for(self, treeish: str) -> RuleTable: ...


class StaticRulesetProvider:
    """Provides the same ruleset for every tree."""

    def __init__(self, rules: RuleTable | Mapping[str, object]) -> None:
        if not isinstance(rules, RuleTable):
            rules = RuleTable.from_mapping(rules)
        self.rules = rules

    def ruleset_for(self, treeish: str) -> RuleTable:
        return self.rules


class TreeRulesetProvider:
    """Reads the ruleset committed alongside each tree.

    Rulesets are looked up at ``path`` in the tree through a batch reader and
    cached by blob id. Trees without a ruleset file, or with one that cannot
    be parsed, get the default ruleset.
    """

    def __init__(self, reader, path: str, default: RuleTable) -> None:
        """Initialize a TreeRulesetProvider.

        Args:
          reader: BatchObjectReader used to read ruleset files
          path: Path of the ruleset file within each tree
          default: Ruleset used when a tree has no usable ruleset file
        """
        self.reader = reader
        self.path = path
        self.default = default
        self._by_tree: dict[str, RuleTable] = {}
        self._by_blob: dict[str, RuleTable] = {}

    def ruleset_for(self, treeish: str) -> RuleTable:
        rules = self._by_tree.get(treeish)
        if rules is not None:
            return rules
        obj = self.reader.read(f"{treeish}:{self.path}")
        if obj.missing:
            rules = self.default
        elif obj.oid in self._by_blob:
            rules = self._by_blob[obj.oid]
        else:
            try:
                rules = RuleTable.from_mapping(json.loads(obj.text()))
            except (ValueError, InvalidRulesetError) as e:
                logger.warning(
                    "unusable ruleset %s in %s: %s", self.path, treeish, e
                )
                rules = self.default
            self._by_blob[obj.oid] = rules
        self._by_tree[treeish] = rules
        return rules


def load_ruleset(path: str) -> RuleTable:
    """Load a JSON ruleset document.

    Raises:
      InvalidRulesetError: if the document cannot be parsed
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except ValueError as e:
        raise InvalidRulesetError(f"{path}: {e}") from e
    return RuleTable.from_mapping(data)
