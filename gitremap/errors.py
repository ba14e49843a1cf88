# errors.py -- errors for gitremap
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

"""Gitremap-related exception classes."""

__all__ = [
    "AmbiguousReferenceError",
    "ClassificationError",
    "InvalidRulesetError",
    "MissingTreeWarning",
    "ObjectMissing",
    "ProtocolError",
    "ProtocolFramingError",
    "ProtocolMisuseError",
    "RemapError",
    "StoreError",
]

from collections.abc import Sequence


class RemapError(Exception):
    """Base class for all fatal gitremap errors."""


class StoreError(RemapError):
    """A git invocation exited unsuccessfully."""

    def __init__(
        self, command: Sequence[str], returncode: int, stderr: bytes = b""
    ) -> None:
        """Initialize a StoreError.

        Args:
          command: The argv that was executed
          returncode: Exit status; negative values are signal numbers
          stderr: Captured standard error of the process
        """
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        if returncode < 0:
            status = f"killed by signal {-returncode}"
        else:
            status = f"exit status {returncode}"
        message = f"Command failed ({status}): {' '.join(self.command)}"
        detail = stderr.decode("utf-8", "replace").strip()
        if detail:
            message += "\n" + detail
        super().__init__(message)


class ObjectMissing(KeyError):
    """An object requested from the store does not exist."""

    def __init__(self, name: str) -> None:
        """Initialize an ObjectMissing error.

        Args:
          name: The object name that could not be found
        """
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"{self.name} is not present in the object store"


class ProtocolError(RemapError):
    """A long-lived git session got into an unrecoverable state."""


class ProtocolFramingError(ProtocolError):
    """A reply did not match the declared framing.

    Once raised the session position is undefined; the session cannot be
    resynchronized.
    """


class ProtocolMisuseError(ProtocolError):
    """A session was driven out of turn by its caller."""


class AmbiguousReferenceError(RemapError):
    """A ref expression resolved to nothing or to more than one object."""

    def __init__(self, expressions: Sequence[str], resolved: Sequence[str] = ()):
        """Initialize an AmbiguousReferenceError.

        Args:
          expressions: Expressions that were requested
          resolved: Ids that could be resolved, if any
        """
        self.expressions = list(expressions)
        self.resolved = list(resolved)
        super().__init__(
            f"ambiguous reference {' '.join(self.expressions)}"
            + (f" (resolved: {' '.join(self.resolved)})" if self.resolved else "")
        )


class ClassificationError(RemapError):
    """Paths in a tree are not covered by the active ruleset."""

    def __init__(
        self,
        base: str,
        unresolved: Sequence[str],
        patterns: Sequence[str] = (),
        rule_keys: Sequence[str] = (),
        hint: str | None = None,
    ) -> None:
        """Initialize a ClassificationError.

        Args:
          base: Directory (relative to the tree root) holding the paths
          unresolved: Names whose status is not determined by the ruleset
          patterns: Wildcard patterns that were tried at this level
          rule_keys: Keys of the rule table at this level
          hint: Optional extra advice for the operator
        """
        self.base = base
        self.unresolved = list(unresolved)
        self.patterns = list(patterns)
        self.rule_keys = list(rule_keys)
        lines = [
            f"status of files {self.unresolved!r}",
            f"    in ./{base}",
        ]
        if self.patterns:
            lines.append(f"    is not determined by patterns {self.patterns!r}")
            lines.append(f"    created from {self.rule_keys!r}")
        else:
            lines.append(f"    is not determined by {self.rule_keys!r}")
        lines.append("    please extend the ruleset with a status for the files above")
        if hint:
            lines.append("    " + hint)
        super().__init__("\n".join(lines))


class InvalidRulesetError(ClassificationError):
    """A ruleset document is malformed."""

    def __init__(self, message: str) -> None:
        """Initialize an InvalidRulesetError.

        Args:
          message: Description of the problem
        """
        self.base = ""
        self.unresolved = []
        self.patterns = []
        self.rule_keys = []
        RemapError.__init__(self, message)


class MissingTreeWarning(UserWarning):
    """A tree transform produced no tree for a commit; the commit is skipped."""
