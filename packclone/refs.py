# refs.py -- For dealing with git refs
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

"""Ref handling."""

__all__ = [
    "HEADREF",
    "LOCAL_BRANCH_PREFIX",
    "LOCAL_REMOTE_PREFIX",
    "LOCAL_TAG_PREFIX",
    "SYMREF",
    "DiskRefsContainer",
    "RefFormatError",
    "SymrefLoop",
    "check_ref_format",
    "extract_branch_name",
    "local_branch_name",
    "parse_symref_value",
]

import logging
import os
from collections.abc import Iterator

from .file import GitFile, ensure_dir_exists
from .objects import valid_hexsha

logger = logging.getLogger(__name__)

HEADREF = b"HEAD"
SYMREF = b"ref: "
LOCAL_BRANCH_PREFIX = b"refs/heads/"
LOCAL_TAG_PREFIX = b"refs/tags/"
LOCAL_REMOTE_PREFIX = b"refs/remotes/"
BAD_REF_CHARS = set(b"\177 ~^:?*[")

# Maximum number of symbolic refs followed before giving up
_MAX_SYMREF_DEPTH = 5


class SymrefLoop(Exception):
    """There is a loop between one or more symrefs."""

    def __init__(self, ref: bytes, depth: int) -> None:
        self.ref = ref
        self.depth = depth
        Exception.__init__(self, f"symref loop at {ref!r} after {depth} steps")


class RefFormatError(KeyError):
    """Ref name is not valid, or lives outside refs/."""


def parse_symref_value(contents: bytes) -> bytes:
    """Parse a symref value.

    Args:
      contents: Contents to parse
    Returns: Destination
    Raises:
      ValueError: if contents is not a symref
    """
    if contents.startswith(SYMREF):
        return contents[len(SYMREF) :].rstrip(b"\r\n")
    raise ValueError(contents)


def check_ref_format(refname: bytes) -> bool:
    """Check if a refname is correctly formatted.

    Implements the rules of git-check-ref-format, for names without the
    leading ``refs/``.

    Args:
      refname: The refname to check
    Returns: True if refname is valid, False otherwise
    """
    if b"/." in refname or refname.startswith(b"."):
        return False
    if b"/" not in refname:
        return False
    if b".." in refname:
        return False
    for c in refname:
        if c < 0o40 or c in BAD_REF_CHARS:
            return False
    if refname[-1:] in (b"/", b"."):
        return False
    if refname.endswith(b".lock"):
        return False
    if b"@{" in refname or b"\\" in refname:
        return False
    return True


def local_branch_name(name: bytes) -> bytes:
    """Build a full branch ref from a short name.

    >>> local_branch_name(b"main")
    b'refs/heads/main'
    """
    if name.startswith(LOCAL_BRANCH_PREFIX):
        return name
    return LOCAL_BRANCH_PREFIX + name


def extract_branch_name(ref: bytes) -> bytes:
    """Extract the branch name from a full branch ref.

    Raises:
      ValueError: if ref is not a local branch ref
    """
    if not ref.startswith(LOCAL_BRANCH_PREFIX):
        raise ValueError(f"Not a local branch ref: {ref!r}")
    return ref[len(LOCAL_BRANCH_PREFIX) :]


class DiskRefsContainer:
    """Refs stored as loose files below a git directory."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        """Initialize DiskRefsContainer.

        Args:
          path: Path of the git directory (the one containing HEAD)
        """
        self.path = os.fsencode(os.fspath(path))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.path!r})"

    def _check_refname(self, name: bytes) -> None:
        """Ensure a refname is valid and lives in refs or is HEAD.

        Raises:
          RefFormatError: if a refname is not HEAD or is otherwise not valid.
        """
        if name == HEADREF:
            return
        if not name.startswith(b"refs/") or not check_ref_format(name[5:]):
            raise RefFormatError(name)

    def refpath(self, name: bytes) -> bytes:
        """Return the disk path of a ref."""
        if os.path.sep != "/":
            name = name.replace(b"/", os.fsencode(os.path.sep))
        return os.path.join(self.path, name)

    def _iter_loose_refs(self, base: bytes = b"refs/") -> Iterator[bytes]:
        base_path = self.refpath(base.rstrip(b"/"))
        for root, dirs, files in os.walk(base_path):
            dirs.sort()
            directory = os.path.relpath(root, self.path)
            directory = directory.replace(os.fsencode(os.path.sep), b"/")
            for filename in sorted(files):
                refname = directory + b"/" + filename
                if check_ref_format(refname[5:]):
                    yield refname

    def allkeys(self) -> set[bytes]:
        """All refs present in this container, including HEAD."""
        keys = set(self._iter_loose_refs())
        if os.path.exists(self.refpath(HEADREF)):
            keys.add(HEADREF)
        return keys

    def as_dict(self) -> dict[bytes, bytes]:
        """Return the resolved value of every ref that points at an object."""
        ret = {}
        for key in sorted(self.allkeys()):
            try:
                ret[key] = self[key]
            except (SymrefLoop, KeyError):
                continue  # Unable to resolve
        return ret

    def read_loose_ref(self, name: bytes) -> bytes | None:
        """Read a reference file and return its contents.

        If the reference file a symbolic reference, only read the first line of
        the file. Otherwise, only read the first 40 bytes.

        Args:
          name: the refname to read
        Returns: The contents of the ref file, or None if the file does not
            exist.
        """
        filename = self.refpath(name)
        try:
            with GitFile(filename, "rb") as f:
                header = f.read(len(SYMREF))
                if header == SYMREF:
                    # Read only the first line
                    return header + f.readline().rstrip(b"\r\n")
                else:
                    # Read only the first 40 bytes
                    return header + f.read(40 - len(SYMREF))
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None

    read_ref = read_loose_ref

    def follow(self, name: bytes) -> tuple[list[bytes], bytes | None]:
        """Follow a reference name.

        Returns: a tuple of (refnames, sha), wheres refnames are the names of
            references in the chain
        """
        contents: bytes | None = SYMREF + name
        depth = 0
        refnames = []
        while contents and contents.startswith(SYMREF):
            refname = contents[len(SYMREF) :]
            refnames.append(refname)
            contents = self.read_ref(refname)
            if not contents:
                break
            depth += 1
            if depth > _MAX_SYMREF_DEPTH:
                raise SymrefLoop(name, depth)
        return refnames, contents

    def __contains__(self, refname: bytes) -> bool:
        try:
            self[refname]
        except KeyError:
            return False
        return True

    def __getitem__(self, name: bytes) -> bytes:
        """Get the SHA1 for a reference name.

        This method follows all symbolic references.
        """
        _, sha = self.follow(name)
        if sha is None or not valid_hexsha(sha):
            raise KeyError(name)
        return sha

    def _write(self, name: bytes, contents: bytes) -> None:
        filename = self.refpath(name)
        ensure_dir_exists(os.path.dirname(filename))
        with GitFile(filename, "wb") as f:
            f.write(contents + b"\n")

    def __setitem__(self, name: bytes, ref: bytes) -> None:
        """Set a reference name to point to the given SHA1.

        Symbolic references are followed, so setting HEAD while it points at
        a branch updates the branch.

        Args:
          name: The refname to set.
          ref: The new sha the refname will refer to.
        """
        if not valid_hexsha(ref):
            raise ValueError(f"{ref!r} is not a valid object id")
        self._check_refname(name)
        realnames, _ = self.follow(name)
        realname = realnames[-1]
        self._check_refname(realname)
        logger.debug("setting %s to %s", realname.decode(), ref.decode())
        self._write(realname, ref)

    def set_symbolic_ref(self, name: bytes, other: bytes) -> None:
        """Make a ref point at another ref.

        Args:
          name: Name of the ref to set
          other: Name of the ref to point at
        """
        self._check_refname(name)
        self._check_refname(other)
        logger.debug("setting %s to ref: %s", name.decode(), other.decode())
        self._write(name, SYMREF + other)

    def set_detached(self, name: bytes, ref: bytes) -> None:
        """Point a ref directly at an object, replacing any symbolic ref."""
        if not valid_hexsha(ref):
            raise ValueError(f"{ref!r} is not a valid object id")
        self._check_refname(name)
        self._write(name, ref)

    def get_symrefs(self) -> dict[bytes, bytes]:
        """Get a dict with all symrefs in this container.

        Returns: Dictionary mapping source ref to target ref
        """
        ret = {}
        for src in self.allkeys():
            contents = self.read_ref(src)
            if contents is not None and contents.startswith(SYMREF):
                ret[src] = parse_symref_value(contents)
        return ret
