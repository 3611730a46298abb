# clone.py -- Cloning a remote repository over smart HTTP
# Copyright (C) 2026 The packclone contributors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# packclone is dual-licensed under the Apache License, Version 2.0 and the GNU
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

"""Clone a remote repository into a new local repository.

The steps are: discover the remote refs, pick the object to check out,
fetch a pack for it, store the pack's objects as loose objects, write refs
and config, and finally populate the working tree.
"""

__all__ = [
    "DEFAULT_ORIGIN",
    "clone",
    "get_default_target",
]

import logging
import os
from collections.abc import Callable
from typing import TYPE_CHECKING

from .client import DiscoveryResult, HttpGitClient, select_head
from .config import StackedConfig
from .refs import (
    HEADREF,
    LOCAL_BRANCH_PREFIX,
    LOCAL_REMOTE_PREFIX,
    LOCAL_TAG_PREFIX,
    extract_branch_name,
    local_branch_name,
)
from .repo import DEFAULT_BRANCH, Repo
from .worktree import checkout_commit, peel_to_commit

if TYPE_CHECKING:
    import urllib3

    from .config import Config

logger = logging.getLogger(__name__)

DEFAULT_ORIGIN = b"origin"

PEELED_TAG_SUFFIX = b"^{}"


def get_default_target(url: str) -> str:
    """Derive a directory name from a repository URL.

    >>> get_default_target("https://example.com/foo/bar.git/")
    'bar'
    """
    name = url.rstrip("/").rsplit("/", 1)[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not name:
        raise ValueError(f"can not derive a directory name from {url}")
    return name


def _choose_head_ref(
    discovery: DiscoveryResult, want: bytes, branch: bytes | None
) -> bytes:
    """Decide which ref HEAD should point at.

    Returns: a ``refs/heads/`` ref, or a ``refs/tags/`` ref if the user
        asked for a tag
    """
    refs = discovery.refs
    if branch is not None:
        if LOCAL_BRANCH_PREFIX + branch in refs:
            return LOCAL_BRANCH_PREFIX + branch
        return LOCAL_TAG_PREFIX + branch
    origin_head = discovery.symrefs.get(HEADREF)
    if origin_head is not None and origin_head.startswith(LOCAL_BRANCH_PREFIX):
        return origin_head
    for name in sorted(refs):
        if name.startswith(LOCAL_BRANCH_PREFIX) and refs[name] == want:
            return name
    return local_branch_name(DEFAULT_BRANCH)


def _import_remote_refs(
    repo: Repo, origin: bytes, refs: dict[bytes, bytes]
) -> None:
    """Store the advertised branches and tags whose objects were fetched."""
    origin_base = LOCAL_REMOTE_PREFIX + origin + b"/"
    for name, sha in sorted(refs.items()):
        if name.endswith(PEELED_TAG_SUFFIX) or sha not in repo.object_store:
            continue
        if name.startswith(LOCAL_BRANCH_PREFIX):
            repo.refs[origin_base + extract_branch_name(name)] = sha
        elif name.startswith(LOCAL_TAG_PREFIX):
            repo.refs[name] = sha


def _set_refs(
    repo: Repo,
    discovery: DiscoveryResult,
    want: bytes,
    branch: bytes | None,
    origin: bytes = DEFAULT_ORIGIN,
) -> bytes:
    """Write the refs of a freshly fetched clone.

    Args:
      repo: Repository the objects were fetched into
      discovery: Refs advertised by the remote
      want: Id that was fetched
      branch: Branch or tag requested by the user, if any
      origin: Name of the remote
    Returns: The ref HEAD was pointed at; for a tag, HEAD is detached and
        the tag ref is returned
    """
    _import_remote_refs(repo, origin, discovery.refs)
    head_ref = _choose_head_ref(discovery, want, branch)
    if head_ref.startswith(LOCAL_TAG_PREFIX):
        # detach HEAD at specified tag
        repo.refs[head_ref] = want
        head = peel_to_commit(repo.object_store, want)
        repo.refs.set_detached(HEADREF, head)
        logger.debug("HEAD detached at %s", head.decode("ascii"))
        return head_ref

    origin_base = LOCAL_REMOTE_PREFIX + origin + b"/"
    origin_ref = origin_base + extract_branch_name(head_ref)
    if origin_ref not in repo.refs:
        repo.refs[origin_ref] = want
    repo.refs.set_symbolic_ref(origin_base + HEADREF, origin_ref)
    repo.refs[head_ref] = want
    repo.refs.set_symbolic_ref(HEADREF, head_ref)
    logger.debug("HEAD set to %s", head_ref.decode("utf-8", "replace"))
    return head_ref


def _write_remote_config(
    repo: Repo, url: str, head_ref: bytes, origin: bytes = DEFAULT_ORIGIN
) -> None:
    config = repo.get_config()
    config.set((b"remote", origin), b"url", url)
    config.set(
        (b"remote", origin),
        b"fetch",
        b"+refs/heads/*:" + LOCAL_REMOTE_PREFIX + origin + b"/*",
    )
    if head_ref.startswith(LOCAL_BRANCH_PREFIX):
        branch_section = (b"branch", extract_branch_name(head_ref))
        config.set(branch_section, b"remote", origin)
        config.set(branch_section, b"merge", head_ref)
    config.write_to_path()


def clone(
    source: str,
    target: str | os.PathLike[str],
    *,
    branch: bytes | str | None = None,
    checkout: bool = True,
    progress: Callable[[bytes], None] | None = None,
    config: "Config | None" = None,
    pool_manager: "urllib3.PoolManager | None" = None,
) -> Repo:
    """Clone a remote repository over smart HTTP.

    Args:
      source: http or https URL of the remote repository
      target: Directory to create the repository in; it must not exist or
        be empty
      branch: Branch or tag to check out instead of the remote HEAD
      checkout: Whether to populate the working tree
      progress: Optional callback for progress messages from the server
      config: Configuration for the HTTP client; defaults to the user and
        system git config
      pool_manager: Optional urllib3 pool manager to use
    Returns: The new repository
    Raises:
      FileExistsError: if target is a non-empty directory
      NetworkError: if the remote could not be reached
      RemoteError: if the server reported an error
      GitProtocolError: if the server response is malformed
      NoSuitableReferenceError: if no ref to clone could be found
      FormatError: if the received pack is malformed
    """
    target = os.fspath(target)
    mkdir = not os.path.exists(target)
    if not mkdir and (not os.path.isdir(target) or os.listdir(target)):
        raise FileExistsError(
            f"destination path {target} already exists and is not an empty directory"
        )
    if isinstance(branch, str):
        branch = branch.encode("utf-8")
    if config is None:
        config = StackedConfig.default()

    client = HttpGitClient(source, pool_manager=pool_manager, config=config)
    discovery = client.discover_references()
    want = select_head(discovery.refs, branch)
    logger.debug("cloning %s at %s", source, want.decode("ascii"))

    repo = Repo.init(target, mkdir=mkdir)
    pack = client.fetch_pack(want, progress)
    added = repo.object_store.add_pack_data(pack)
    logger.debug("stored %d objects", len(added))

    head_ref = _set_refs(repo, discovery, want, branch)
    _write_remote_config(repo, client.get_url(), head_ref)

    if checkout:
        honor_filemode = repo.get_config().get_boolean(
            (b"core",), b"filemode", default=True
        )
        checkout_commit(
            repo.object_store,
            repo.head(),
            repo.path,
            honor_filemode=bool(honor_filemode),
        )
    return repo
