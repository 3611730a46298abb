# worktree.py -- Populating a working tree from git objects
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

"""Moving files between a working directory and the object store.

Commits are checked out by writing their tree below a directory, and a
directory can be recorded as a tree with ``write_tree_from_directory``.
"""

__all__ = [
    "INVALID_DOTNAMES",
    "blob_from_path_and_stat",
    "build_file_from_blob",
    "build_tree",
    "checkout_commit",
    "cleanup_mode",
    "iter_tree_contents",
    "peel_to_commit",
    "validate_path_element",
    "write_tree_from_directory",
]

import logging
import os
import stat
import sys
from collections.abc import Iterator

from .errors import NotBlobError, NotCommitError, NotTreeError
from .object_store import BaseObjectStore
from .objects import (
    S_IFGITLINK,
    S_ISGITLINK,
    ObjectType,
    TreeEntry,
    parse_commit_tree,
    parse_tag_object,
    parse_tree,
    serialize_tree,
)

logger = logging.getLogger(__name__)

INVALID_DOTNAMES = (b".git", b".", b"..", b"")
_CONTROLDIR = b".git"

# Annotated tags pointing at annotated tags are followed this far
_MAX_PEEL_DEPTH = 10


def validate_path_element(element: bytes) -> bool:
    """Check that a tree entry name is safe to create on disk."""
    if element.lower() in INVALID_DOTNAMES:
        return False
    if b"/" in element or b"\0" in element:
        return False
    if sys.platform == "win32" and b"\\" in element:
        return False
    return True


def peel_to_commit(object_store: BaseObjectStore, sha: bytes) -> bytes:
    """Follow annotated tags until reaching a commit.

    Args:
      object_store: Store to read objects from
      sha: hex SHA of a commit or tag
    Returns: hex SHA of the commit
    Raises:
      NotCommitError: if the chain ends in something other than a commit
      KeyError: if an object is missing
    """
    for _ in range(_MAX_PEEL_DEPTH):
        type_num, data = object_store.get_raw(sha)
        if type_num == ObjectType.COMMIT:
            return sha
        if type_num != ObjectType.TAG:
            raise NotCommitError(sha)
        _, sha = parse_tag_object(data)
    raise NotCommitError(sha)


def iter_tree_contents(
    object_store: BaseObjectStore, tree_id: bytes, prefix: bytes = b""
) -> Iterator[TreeEntry]:
    """Iterate the contents of a tree and all its subtrees.

    Subtrees themselves are not yielded, only the entries below them.

    Args:
      object_store: Store to read trees from
      tree_id: hex SHA of the root tree
      prefix: Path prefix for the yielded entries
    Returns: Iterator over TreeEntry tuples with slash-separated paths
    Raises:
      NotTreeError: if tree_id (or a subtree) is not a tree
      ValueError: if an entry has an unsafe name
    """
    type_num, data = object_store.get_raw(tree_id)
    if type_num != ObjectType.TREE:
        raise NotTreeError(tree_id)
    for entry in parse_tree(data):
        if not validate_path_element(entry.path):
            raise ValueError(f"invalid path element {entry.path!r} in tree {tree_id!r}")
        path = prefix + entry.path
        if stat.S_ISDIR(entry.mode):
            yield from iter_tree_contents(object_store, entry.sha, path + b"/")
        else:
            yield TreeEntry(path, entry.mode, entry.sha)


def build_file_from_blob(
    contents: bytes, mode: int, target_path: bytes, *, honor_filemode: bool = True
) -> os.stat_result:
    """Build a file or symlink on disk based on a blob.

    Args:
      contents: The blob contents
      mode: File mode from the tree
      target_path: Path to write to
      honor_filemode: Whether to set the executable bit
    Returns: stat object for the file
    """
    if stat.S_ISLNK(mode):
        if os.path.lexists(target_path):
            os.unlink(target_path)
        if sys.platform == "win32":
            # os.symlink on Windows requires a unicode string.
            os.symlink(contents.decode("utf-8"), target_path.decode("utf-8"))
        else:
            os.symlink(contents, target_path)
    else:
        with open(target_path, "wb") as f:
            f.write(contents)
        if honor_filemode:
            os.chmod(target_path, 0o755 if mode & stat.S_IXUSR else 0o644)
    return os.lstat(target_path)


def build_tree(
    object_store: BaseObjectStore,
    tree_id: bytes,
    root_path: str | os.PathLike[str],
    *,
    honor_filemode: bool = True,
) -> int:
    """Write the contents of a tree below a directory.

    Regular files get mode 0644 or 0755, symlinks are created as symlinks
    and submodules become empty directories.

    Args:
      object_store: Store to read objects from
      tree_id: hex SHA of the tree
      root_path: Directory to populate
      honor_filemode: Whether to set the executable bit
    Returns: Number of entries written
    """
    root = os.fsencode(os.fspath(root_path))
    count = 0
    for entry in iter_tree_contents(object_store, tree_id):
        full_path = os.path.join(root, *entry.path.split(b"/"))
        parent = os.path.dirname(full_path)
        if not os.path.isdir(parent):
            os.makedirs(parent)
        if S_ISGITLINK(entry.mode):
            # Submodules are not fetched; leave a placeholder directory.
            if not os.path.isdir(full_path):
                os.mkdir(full_path)
        else:
            type_num, contents = object_store.get_raw(entry.sha)
            if type_num != ObjectType.BLOB:
                raise NotBlobError(entry.sha)
            build_file_from_blob(
                contents, entry.mode, full_path, honor_filemode=honor_filemode
            )
        count += 1
    return count


def checkout_commit(
    object_store: BaseObjectStore,
    commit_id: bytes,
    root_path: str | os.PathLike[str],
    *,
    honor_filemode: bool = True,
) -> int:
    """Populate a working directory with the tree of a commit.

    Annotated tags are peeled first.

    Args:
      object_store: Store to read objects from
      commit_id: hex SHA of a commit or annotated tag
      root_path: Directory to populate
      honor_filemode: Whether to set the executable bit
    Returns: Number of entries written
    """
    commit_id = peel_to_commit(object_store, commit_id)
    _, data = object_store.get_raw(commit_id)
    tree_id = parse_commit_tree(data)
    count = build_tree(
        object_store, tree_id, root_path, honor_filemode=honor_filemode
    )
    logger.debug(
        "checked out %d entries of %s into %s",
        count,
        commit_id.decode("ascii"),
        os.fspath(root_path),
    )
    return count


def cleanup_mode(mode: int) -> int:
    """Cleanup a mode value.

    This will return a mode that can be stored in a tree object.

    Args:
      mode: Mode to clean up.
    Returns: mode
    """
    if stat.S_ISLNK(mode):
        return stat.S_IFLNK
    elif stat.S_ISDIR(mode):
        return stat.S_IFDIR
    elif S_ISGITLINK(mode):
        return S_IFGITLINK
    ret = stat.S_IFREG | 0o644
    if mode & 0o100:
        ret |= 0o111
    return ret


def blob_from_path_and_stat(fs_path: bytes, st: os.stat_result) -> bytes:
    """Read the blob contents of a file; for a symlink, its target."""
    if stat.S_ISLNK(st.st_mode):
        return os.readlink(fs_path)
    with open(fs_path, "rb") as f:
        return f.read()


def _write_directory(object_store: BaseObjectStore, path: bytes) -> bytes | None:
    entries = []
    with os.scandir(path) as it:
        for dir_entry in it:
            if dir_entry.name == _CONTROLDIR:
                continue
            st = dir_entry.stat(follow_symlinks=False)
            if stat.S_ISDIR(st.st_mode):
                sha = _write_directory(object_store, dir_entry.path)
                if sha is None:
                    continue
            elif stat.S_ISREG(st.st_mode) or stat.S_ISLNK(st.st_mode):
                sha = object_store.add_object(
                    ObjectType.BLOB, blob_from_path_and_stat(dir_entry.path, st)
                )
            else:
                logger.debug("skipping special file %r", dir_entry.path)
                continue
            entries.append(TreeEntry(dir_entry.name, cleanup_mode(st.st_mode), sha))
    if not entries:
        return None
    return object_store.add_object(ObjectType.TREE, serialize_tree(entries))


def write_tree_from_directory(
    object_store: BaseObjectStore, root_path: str | os.PathLike[str]
) -> bytes:
    """Store the files below a directory as blobs and trees.

    ``.git`` directories are skipped. Directories without any files are
    left out, since a tree can not record them; an empty root still
    yields the empty tree.

    Args:
      object_store: Store to add the objects to
      root_path: Directory to read
    Returns: hex SHA of the root tree
    """
    root = os.fsencode(os.fspath(root_path))
    tree_id = _write_directory(object_store, root)
    if tree_id is None:
        tree_id = object_store.add_object(ObjectType.TREE, b"")
    logger.debug("wrote tree %s for %s", tree_id.decode("ascii"), os.fspath(root_path))
    return tree_id
