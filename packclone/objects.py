# objects.py -- Access to base git objects
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

"""Access to base git objects.

Objects are handled as ``(type_num, data)`` pairs; the helpers here know how
to hash them, serialize their loose form and read the few fields a clone
needs (the tree of a commit, the entries of a tree, the target of a tag).
"""

__all__ = [
    "S_IFGITLINK",
    "ZERO_SHA",
    "ObjectType",
    "TreeEntry",
    "S_ISGITLINK",
    "format_timezone",
    "hex_to_filename",
    "hex_to_sha",
    "key_entry",
    "obj_sha",
    "object_header",
    "parse_commit_tree",
    "parse_tag_object",
    "parse_tree",
    "serialize_commit",
    "serialize_tree",
    "sha_to_hex",
    "valid_hexsha",
]

import binascii
import os
import stat
from collections.abc import Iterable, Iterator
from enum import IntEnum
from hashlib import sha1
from typing import NamedTuple

ZERO_SHA = b"0" * 40

# Header fields for commits and tags
_TREE_HEADER = b"tree"
_PARENT_HEADER = b"parent"
_AUTHOR_HEADER = b"author"
_COMMITTER_HEADER = b"committer"
_OBJECT_HEADER = b"object"
_TYPE_HEADER = b"type"

# Git-style submodule entries in trees
S_IFGITLINK = 0o160000


def S_ISGITLINK(m: int) -> bool:
    """Check if a mode indicates a submodule.

    Args:
      m: Mode to check
    Returns: a ``boolean``
    """
    return stat.S_IFMT(m) == S_IFGITLINK


class ObjectType(IntEnum):
    """Type numbers of the objects found in a pack."""

    COMMIT = 1
    TREE = 2
    BLOB = 3
    TAG = 4
    OFS_DELTA = 6
    REF_DELTA = 7

    @property
    def type_name(self) -> bytes:
        """Name used in the loose object header, e.g. ``b"blob"``."""
        try:
            return _TYPE_NAMES[self]
        except KeyError:
            raise ValueError(f"{self.name} has no object header name") from None

    @classmethod
    def from_type_name(cls, name: bytes) -> "ObjectType":
        """Look up a non-delta type by its header name."""
        for type_num, type_name in _TYPE_NAMES.items():
            if type_name == name:
                return type_num
        raise ValueError(f"unknown object type {name!r}")

    @property
    def is_delta(self) -> bool:
        """Whether objects of this type are stored as a delta."""
        return self in (ObjectType.OFS_DELTA, ObjectType.REF_DELTA)


_TYPE_NAMES = {
    ObjectType.COMMIT: b"commit",
    ObjectType.TREE: b"tree",
    ObjectType.BLOB: b"blob",
    ObjectType.TAG: b"tag",
}


def sha_to_hex(sha: bytes) -> bytes:
    """Takes a string and returns the hex of the sha within."""
    hexsha = binascii.hexlify(sha)
    assert len(hexsha) == 40, f"Incorrect length of sha1 string: {hexsha!r}"
    return hexsha


def hex_to_sha(hex: bytes | str) -> bytes:
    """Takes a hex sha and returns a binary sha."""
    assert len(hex) == 40, f"Incorrect length of hexsha: {hex!r}"
    try:
        return binascii.unhexlify(hex)
    except TypeError as exc:
        if not isinstance(hex, bytes):
            raise
        raise ValueError(exc.args[0]) from exc


def valid_hexsha(hex: bytes | str) -> bool:
    """Check whether a string is a valid 40 digit hex sha."""
    if len(hex) != 40:
        return False
    try:
        binascii.unhexlify(hex)
    except (TypeError, binascii.Error):
        return False
    else:
        return True


def hex_to_filename(path: str, hex: bytes | str) -> str:
    """Takes a hex sha and returns its filename relative to the given path."""
    if not isinstance(hex, str):
        hex = hex.decode("ascii")
    directory = hex[:2]
    file = hex[2:]
    return os.path.join(path, directory, file)


def object_header(type_num: int, length: int) -> bytes:
    """Return an object header for the given numeric type and text length."""
    return ObjectType(type_num).type_name + b" " + str(length).encode("ascii") + b"\0"


def obj_sha(type_num: int, data: bytes) -> bytes:
    """Compute the raw SHA-1 of an object.

    Args:
      type_num: Numeric (non-delta) object type
      data: Object contents
    Returns: 20-byte binary SHA
    """
    sha = sha1(object_header(type_num, len(data)))
    sha.update(data)
    return sha.digest()


class TreeEntry(NamedTuple):
    """Named tuple encapsulating a single tree entry."""

    path: bytes
    mode: int
    sha: bytes


def parse_tree(text: bytes) -> Iterator[TreeEntry]:
    """Parse a tree text.

    Args:
      text: Serialized text to parse
    Returns: iterator of TreeEntry(name, mode, hex sha)
    Raises:
      ValueError: if the tree is malformed
    """
    count = 0
    length = len(text)
    while count < length:
        mode_end = text.find(b" ", count)
        if mode_end == -1:
            raise ValueError(f"Missing space after mode in tree at {count}")
        mode_text = text[count:mode_end]
        if mode_text.startswith(b"0"):
            raise ValueError(f"Invalid mode {mode_text!r}")
        try:
            mode = int(mode_text, 8)
        except ValueError as exc:
            raise ValueError(f"Invalid mode {mode_text!r}") from exc
        name_end = text.find(b"\0", mode_end)
        if name_end == -1:
            raise ValueError(f"Missing NUL after name in tree at {mode_end}")
        name = text[mode_end + 1 : name_end]
        count = name_end + 21
        sha = text[name_end + 1 : count]
        if len(sha) != 20:
            raise ValueError("Sha has invalid length")
        yield TreeEntry(name, mode, sha_to_hex(sha))


def key_entry(entry: TreeEntry) -> bytes:
    """Sort key for tree entries.

    Git orders subtrees as if their name ended with a slash.
    """
    if stat.S_ISDIR(entry.mode):
        return entry.path + b"/"
    return entry.path


def serialize_tree(items: Iterable[TreeEntry]) -> bytes:
    """Serialize tree entries, in git order.

    Args:
      items: Iterable over TreeEntry(name, mode, hex sha) tuples
    Returns: Serialized tree text
    """
    return b"".join(
        (f"{mode:04o}").encode("ascii") + b" " + name + b"\0" + hex_to_sha(hexsha)
        for name, mode, hexsha in sorted(items, key=key_entry)
    )


def _parse_headers(text: bytes) -> Iterator[tuple[bytes, bytes]]:
    """Yield (field, value) pairs from the header block of a commit or tag."""
    for line in text.split(b"\n"):
        if not line:
            # Blank line separates headers from the message
            return
        if line.startswith(b" "):
            # Continuation of a multi-line header such as gpgsig
            continue
        field, _, value = line.partition(b" ")
        yield field, value


def parse_commit_tree(text: bytes) -> bytes:
    """Return the hex sha of the tree a commit points at.

    Raises:
      ValueError: if the commit has no valid tree header
    """
    for field, value in _parse_headers(text):
        if field == _TREE_HEADER:
            if not valid_hexsha(value):
                raise ValueError(f"Invalid tree sha {value!r}")
            return value
    raise ValueError("Commit has no tree header")


def format_timezone(offset: int) -> bytes:
    """Format a timezone offset in seconds for a commit header, e.g. ``+0100``."""
    if offset % 60 != 0:
        raise ValueError("Unable to handle non-minute offset.")
    sign = "-" if offset < 0 else "+"
    offset = abs(offset)
    return (f"{sign}{offset // 3600:02d}{(offset // 60) % 60:02d}").encode("ascii")


def serialize_commit(
    tree: bytes,
    parents: Iterable[bytes],
    author: bytes,
    committer: bytes,
    commit_time: int,
    commit_timezone: int,
    message: bytes,
) -> bytes:
    """Serialize a commit.

    Author and committer share the same time. A newline is appended to
    the message if it does not end in one.
    """
    when = str(commit_time).encode("ascii") + b" " + format_timezone(commit_timezone)
    lines = [_TREE_HEADER + b" " + tree]
    lines.extend(_PARENT_HEADER + b" " + parent for parent in parents)
    lines.append(_AUTHOR_HEADER + b" " + author + b" " + when)
    lines.append(_COMMITTER_HEADER + b" " + committer + b" " + when)
    if not message.endswith(b"\n"):
        message += b"\n"
    return b"\n".join(lines) + b"\n\n" + message


def parse_tag_object(text: bytes) -> tuple[ObjectType, bytes]:
    """Return the (type, hex sha) of the object an annotated tag points at.

    Raises:
      ValueError: if the tag has no valid object or type header
    """
    obj = None
    type_num = None
    for field, value in _parse_headers(text):
        if field == _OBJECT_HEADER:
            obj = value
        elif field == _TYPE_HEADER:
            type_num = ObjectType.from_type_name(value)
    if obj is None or not valid_hexsha(obj):
        raise ValueError("Tag has no valid object header")
    if type_num is None:
        raise ValueError("Tag has no type header")
    return type_num, obj
