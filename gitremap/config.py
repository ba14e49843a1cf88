# config.py -- Run configuration for gitremap
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

"""Run configuration.

A RemapConfig is passed explicitly to every component; nothing in gitremap
reads module level settings. Values can be overlaid from the repository's
git configuration, e.g.::

    [remap]
        prefix = mirror
        cacheWrite = false
        issueSigils = "+#"
"""

__all__ = [
    "RemapConfig",
    "parse_bool",
]

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .store import GitStore

_TRUE_VALUES = ("true", "yes", "on", "1", "")
_FALSE_VALUES = ("false", "no", "off", "0")


def parse_bool(value: str) -> bool:
    """Parse a boolean following git's rules.

    Raises:
      ValueError: if the value is not a recognized boolean
    """
    lower = value.strip().lower()
    if lower in _TRUE_VALUES:
        return True
    if lower in _FALSE_VALUES:
        return False
    raise ValueError(f"not a valid boolean string: {value}")


@dataclass(frozen=True)
class RemapConfig:
    """Settings shared by all components of one engine invocation."""

    prefix: str = "subtree"
    git_command: tuple[str, ...] = ("git",)
    repo_path: str | None = None
    cache: bool = True
    cache_write: bool = True
    trace: int = 0
    admin_name: str = "subrepoBot"
    admin_email: str = "subrepoBot@localhost"
    admin_committer_email: str | None = None
    scratch_identity: str = "tmp <tmp@tmp.com> 1000000000 +0000"
    issue_sigils: tuple[str, ...] = ("+", "#")
    ruleset_path: str = ".remaprules.json"
    descriptor_path: str | None = None
    extra_env: Mapping[str, str] = field(default_factory=dict)

    @property
    def full_prefix(self) -> str:
        """Ref namespace all administrative refs live under."""
        prefix = self.prefix.strip("/")
        if prefix.startswith("refs"):
            return prefix
        return "refs/heads/" + prefix

    @property
    def index_ref(self) -> str:
        """Ref holding the commit map cache commits."""
        return self.full_prefix + "/index"

    def ref(self, kind: str, name: str | int) -> str:
        """Build a ref in one of the administrative sub-namespaces.

        Args:
          kind: One of "branches", "remotes", "merge", "tmp", "tmp-counter"
          name: Name (or counter) within that namespace
        """
        return f"{self.full_prefix}/{kind}/{name}"

    def from_git_config(self, store: "GitStore") -> "RemapConfig":
        """Return a copy with values from the remap.* git config section applied."""
        values = store.config_section("remap")
        changes: dict[str, object] = {}
        if "prefix" in values:
            changes["prefix"] = values["prefix"]
        if "cache" in values:
            changes["cache"] = parse_bool(values["cache"])
        if "cachewrite" in values:
            changes["cache_write"] = parse_bool(values["cachewrite"])
        if "trace" in values:
            changes["trace"] = int(values["trace"])
        if "adminname" in values:
            changes["admin_name"] = values["adminname"]
        if "adminemail" in values:
            changes["admin_email"] = values["adminemail"]
        if "admincommitteremail" in values:
            changes["admin_committer_email"] = values["admincommitteremail"]
        if "issuesigils" in values:
            changes["issue_sigils"] = tuple(values["issuesigils"])
        if "rulesetpath" in values:
            changes["ruleset_path"] = values["rulesetpath"]
        if "descriptorpath" in values:
            changes["descriptor_path"] = values["descriptorpath"] or None
        return dataclasses.replace(self, **changes)
