# porcelain.py -- Porcelain-like layer on top of gitremap
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

"""Simple wrapper that provides porcelain-like functions on top of gitremap.

Currently implemented:
 * split
 * export
 * check_rules
 * sync
 * squash
 * filter_branch

These functions are meant to behave similarly to the commands of the
``gitremap`` command line tool. Each takes the path of the repository as
first argument.
"""

__all__ = [
    "check_rules",
    "export",
    "filter_branch",
    "open_store",
    "split",
    "squash",
    "sync",
]

import dataclasses
import json
import logging
from collections.abc import Mapping, Sequence

from . import filter_branch as _filter_branch
from . import sync as _sync
from .classify import (
    PathClassifier,
    RuleTable,
    StaticRulesetProvider,
    TreeRulesetProvider,
    load_ruleset,
)
from .commitmap import CommitMapCache
from .config import RemapConfig
from .errors import InvalidRulesetError, ObjectMissing
from .log_utils import trace_level
from .remap import HistoryRemapper
from .store import GitStore
from .transforms import DescriptorTransform, PublicTreeTransform, SubtreeTransform

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM = "origin/master"


def open_store(repo: str = ".", config: RemapConfig | None = None) -> GitStore:
    """Open the store of a repository.

    Settings from the ``remap`` section of the repository's git config are
    applied on top of config. Without an explicit trace level, the one
    implied by GITREMAP_TRACE (or GIT_TRACE) is used.
    """
    config = dataclasses.replace(config or RemapConfig(), repo_path=repo)
    config = config.from_git_config(GitStore(config))
    if not config.trace:
        config = dataclasses.replace(config, trace=trace_level())
    return GitStore(config)


def _remap(store, name, transform, from_, to, *, reader=None) -> str | None:
    cache = CommitMapCache(store)
    commit_map = cache.load(name)
    start_expr = from_ or commit_map.initial
    expressions = [e for e in (start_expr, to or DEFAULT_UPSTREAM) if e]
    resolved = store.resolve_refs(expressions)
    end = resolved[-1]
    if commit_map.last is None:
        commit_map.first = resolved[0] if start_expr else None
    remapper = HistoryRemapper(store, transform, commit_map, reader=reader)
    new_head = remapper.run(
        commit_map.first,
        end,
        commit_map.last_checked,
        target_ref=store.config.ref("branches", name),
        cache=cache,
    )
    logger.info(
        "%s: %d new commits, %s -> %s", name, len(remapper.created), end, new_head
    )
    return new_head


def split(
    repo: str,
    name: str,
    directory: str,
    from_: str | None = None,
    to: str | None = None,
    *,
    config: RemapConfig | None = None,
) -> str | None:
    """Extract the history of a subdirectory into ``<prefix>/branches/<name>``.

    Args:
      repo: Path to the repository
      name: Name of the derived branch and of its commit map
      directory: Subdirectory to extract
      from_: Oldest commit to consider; defaults to the cached initial commit
      to: Head to extract; defaults to origin/master
      config: Run configuration
    Returns:
      The id the derived branch points to
    """
    store = open_store(repo, config)
    return _remap(store, name, SubtreeTransform(directory), from_, to)


def _default_ruleset(ruleset) -> RuleTable:
    if ruleset is None:
        return RuleTable()
    if isinstance(ruleset, RuleTable):
        return ruleset
    if isinstance(ruleset, Mapping):
        return RuleTable.from_mapping(ruleset)
    return load_ruleset(ruleset)


def export(
    repo: str,
    name: str,
    from_: str | None = None,
    to: str | None = None,
    *,
    ruleset: RuleTable | Mapping[str, object] | str | None = None,
    per_tree_rules: bool = True,
    strict: bool = True,
    descriptor_transform: DescriptorTransform | None = None,
    config: RemapConfig | None = None,
) -> str | None:
    """Produce the public projection of a history into ``<prefix>/branches/<name>``.

    Args:
      repo: Path to the repository
      name: Name of the derived branch and of its commit map
      from_: Oldest commit to consider; defaults to the cached initial commit
      to: Head to export; defaults to origin/master
      ruleset: Default ruleset (RuleTable, mapping or path of a JSON file)
      per_tree_rules: Use the ruleset committed in each tree when present
      strict: Whether paths not covered by the ruleset are fatal
      descriptor_transform: Rewrites the configured descriptor file
      config: Run configuration
    Returns:
      The id the derived branch points to
    """
    store = open_store(repo, config)
    default = _default_ruleset(ruleset)
    with store.start_batch_reader() as reader:
        if per_tree_rules:
            rulesets = TreeRulesetProvider(reader, store.config.ruleset_path, default)
        else:
            rulesets = StaticRulesetProvider(default)
        transform = PublicTreeTransform(
            store,
            rulesets,
            strict=strict,
            reader=reader,
            descriptor_path=store.config.descriptor_path,
            descriptor_transform=descriptor_transform,
        )
        return _remap(store, name, transform, from_, to, reader=reader)


def check_rules(
    repo: str = ".",
    rev: str = "HEAD",
    *,
    ruleset: RuleTable | Mapping[str, object] | str | None = None,
    strict: bool = True,
    config: RemapConfig | None = None,
) -> list[str]:
    """Classify the files of a revision.

    Without an explicit ruleset the one committed in the revision is used.

    Returns:
      The paths the ruleset drops
    Raises:
      ClassificationError: in strict mode, if a path is not covered
    """
    store = open_store(repo, config)
    if ruleset is not None:
        rules = _default_ruleset(ruleset)
    else:
        try:
            _, data = store.read_object(f"{rev}:{store.config.ruleset_path}")
        except ObjectMissing:
            raise InvalidRulesetError(
                f"{rev} has no {store.config.ruleset_path}"
            ) from None
        try:
            rules = RuleTable.from_mapping(json.loads(data))
        except ValueError as e:
            raise InvalidRulesetError(f"{store.config.ruleset_path}: {e}") from e
    return PathClassifier(rules, strict).classify(store.ls_tree_names(rev))


def sync(
    repo: str,
    name: str,
    directory: str | None = None,
    *,
    remote: str | None = None,
    main_branch: str = _sync.DEFAULT_MAIN_BRANCH,
    merge_ref: str | None = None,
    config: RemapConfig | None = None,
) -> str | None:
    """Replay the commits of a mirror onto ``<prefix>/merge/<name>``."""
    store = open_store(repo, config)
    return _sync.sync_remote(
        store,
        name,
        directory=directory,
        remote=remote,
        main_branch=main_branch,
        merge_ref=merge_ref,
        descriptor_path=store.config.descriptor_path or _sync.DEFAULT_DESCRIPTOR,
    )


def squash(
    repo: str,
    name: str,
    directory: str | None = None,
    *,
    remote: str | None = None,
    local: str = _sync.DEFAULT_LOCAL_BRANCH,
    merge_ref: str | None = None,
    config: RemapConfig | None = None,
) -> str:
    """Import the newest state of a mirror as one commit on the local branch."""
    store = open_store(repo, config)
    return _sync.squash_remote(
        store,
        name,
        directory,
        remote=remote,
        local=local,
        merge_ref=merge_ref,
        descriptor_path=store.config.descriptor_path or _sync.DEFAULT_DESCRIPTOR,
    )


def filter_branch(
    repo: str,
    branch: str,
    *,
    root_path: str = "",
    root_commit: str | None = None,
    exclude_file: str | None = None,
    excludes: Sequence[str] = (),
    actions_file: str | None = None,
    version_bump_pattern: str | None = _filter_branch.DEFAULT_VERSION_BUMP,
    target_ref: str = _filter_branch.DEFAULT_TARGET,
    config: RemapConfig | None = None,
) -> str | None:
    """Rewrite the whole history of a branch into target_ref."""
    store = open_store(repo, config)
    excludes = list(excludes)
    if exclude_file:
        excludes.extend(_filter_branch.read_exclude_list(exclude_file))
    actions = _filter_branch.read_commit_actions(actions_file) if actions_file else {}
    return _filter_branch.filter_branch(
        store,
        branch,
        root_path=root_path,
        root_commit=root_commit,
        excludes=excludes,
        commit_actions=actions,
        version_bump_pattern=version_bump_pattern,
        target_ref=target_ref,
    )
