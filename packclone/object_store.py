# object_store.py -- Object store for git objects
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

"""Git object store interfaces and implementation."""

__all__ = [
    "BaseObjectStore",
    "DiskObjectStore",
    "MemoryObjectStore",
]

import logging
import os
import zlib
from collections.abc import Iterator
from typing import TYPE_CHECKING

from .errors import FormatError
from .file import GitFile
from .objects import (
    ObjectType,
    hex_to_filename,
    obj_sha,
    object_header,
    sha_to_hex,
    valid_hexsha,
)
from .pack import DeltaChainIterator, PackData

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

# Mode of loose object files
LOOSE_MODE = 0o444


def _to_hexsha(sha: bytes) -> bytes:
    if len(sha) == 40:
        return sha
    elif len(sha) == 20:
        return sha_to_hex(sha)
    else:
        raise ValueError(f"Invalid sha {sha!r}")


class BaseObjectStore:
    """Object store interface.

    Object ids are 40-byte hex SHAs; raw 20-byte SHAs are accepted wherever
    an id is taken.
    """

    def contains_loose(self, sha: bytes) -> bool:
        """Check if a particular object is present by SHA1 and is loose."""
        raise NotImplementedError(self.contains_loose)

    def __contains__(self, sha1: bytes) -> bool:
        """Check if a particular object is present by SHA1."""
        return self.contains_loose(sha1)

    def get_raw(self, name: bytes) -> tuple[int, bytes]:
        """Obtain the raw text for an object.

        Args:
          name: sha for the object.
        Returns: tuple with numeric type and object contents.
        Raises:
          KeyError: if the object is not present
        """
        raise NotImplementedError(self.get_raw)

    def __iter__(self) -> Iterator[bytes]:
        """Iterate over the SHAs that are present in this store."""
        raise NotImplementedError(self.__iter__)

    def add_object(self, type_num: int, data: bytes) -> bytes:
        """Add a single object to this object store.

        Adding an object that is already present is a no-op.

        Args:
          type_num: Numeric object type (commit, tree, blob or tag)
          data: Object contents
        Returns: hex SHA of the object
        """
        raise NotImplementedError(self.add_object)

    def add_pack_data(self, data: bytes) -> list[bytes]:
        """Add the objects of a packfile to this object store.

        Every entry is read, the pack checksum verified and all deltas
        resolved before anything is written. Ref-deltas whose base is not
        in the pack are resolved against the objects already in this store.

        Args:
          data: Complete pack contents
        Returns: hex SHAs of the added objects, in the order they were
            resolved
        Raises:
          FormatError: if the pack is malformed or a delta can not be
            resolved
        """
        pack_data = PackData(data)
        walker = DeltaChainIterator.for_pack_data(
            pack_data, resolve_ext_ref=self.get_raw
        )
        resolved = list(walker)
        shas = []
        for unpacked in resolved:
            assert unpacked.obj_type_num is not None
            assert unpacked.obj_data is not None
            shas.append(self.add_object(unpacked.obj_type_num, unpacked.obj_data))
        logger.debug(
            "added %d objects from pack (%d external bases)",
            len(shas),
            len(walker.ext_refs()),
        )
        return shas


class DiskObjectStore(BaseObjectStore):
    """Git-style object store that exists on disk as loose objects."""

    path: str | os.PathLike[str]

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        loose_compression_level: int = -1,
        fsync_object_files: bool = False,
    ) -> None:
        """Open an object store.

        Args:
          path: Path of the object store.
          loose_compression_level: zlib compression level for loose objects
          fsync_object_files: Whether to fsync object files after writing
        """
        self.path = path
        self.loose_compression_level = loose_compression_level
        self.fsync_object_files = fsync_object_files

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({self.path!r})>"

    @classmethod
    def from_config(
        cls, path: str | os.PathLike[str], config: "Config"
    ) -> "DiskObjectStore":
        """Create a DiskObjectStore from a configuration object.

        Args:
          path: Path to the object store directory
          config: Configuration object to read settings from
        Returns:
          New DiskObjectStore instance configured according to config
        """
        try:
            default_compression_level = int(
                config.get((b"core",), b"compression").decode()
            )
        except KeyError:
            default_compression_level = -1
        try:
            loose_compression_level = int(
                config.get((b"core",), b"looseCompression").decode()
            )
        except KeyError:
            loose_compression_level = default_compression_level
        fsync_object_files = config.get_boolean(
            (b"core",), b"fsyncObjectFiles", False
        )
        return cls(
            path,
            loose_compression_level=loose_compression_level,
            fsync_object_files=fsync_object_files,
        )

    @classmethod
    def init(cls, path: str | os.PathLike[str]) -> "DiskObjectStore":
        """Create a new, empty object store directory.

        Args:
          path: Path where the object store should be created
        """
        try:
            os.mkdir(path)
        except FileExistsError:
            pass
        return cls(path)

    def _get_shafile_path(self, sha: bytes) -> str:
        return hex_to_filename(os.fspath(self.path), _to_hexsha(sha))

    def contains_loose(self, sha: bytes) -> bool:
        """Check if a particular object is present by SHA1 and is loose."""
        return os.path.exists(self._get_shafile_path(sha))

    def __iter__(self) -> Iterator[bytes]:
        """Iterate over the SHAs that are present in this store."""
        for base in sorted(os.listdir(self.path)):
            if len(base) != 2:
                continue
            for rest in sorted(os.listdir(os.path.join(self.path, base))):
                sha = os.fsencode(base + rest)
                if not valid_hexsha(sha):
                    continue
                yield sha

    def get_raw(self, name: bytes) -> tuple[int, bytes]:
        """Obtain the raw text for an object.

        Args:
          name: sha for the object.
        Returns: tuple with numeric type and object contents.
        Raises:
          KeyError: if the object is not present
          FormatError: if the loose object file is corrupt
        """
        path = self._get_shafile_path(name)
        try:
            with GitFile(path, "rb") as f:
                compressed = f.read()
        except FileNotFoundError:
            raise KeyError(name) from None
        try:
            text = zlib.decompress(compressed)
        except zlib.error as exc:
            raise FormatError(f"corrupt loose object {path}: {exc}") from exc
        return _parse_loose_object(text, path)

    def add_object(self, type_num: int, data: bytes) -> bytes:
        """Add a single object to this object store.

        Args:
          type_num: Numeric object type
          data: Object contents
        Returns: hex SHA of the object
        """
        hexsha = sha_to_hex(obj_sha(type_num, data))
        path = self._get_shafile_path(hexsha)
        dir = os.path.dirname(path)
        try:
            os.mkdir(dir)
        except FileExistsError:
            pass
        if os.path.exists(path):
            return hexsha  # Already there, no need to write again
        compobj = zlib.compressobj(self.loose_compression_level)
        with GitFile(path, "wb", mask=LOOSE_MODE, fsync=self.fsync_object_files) as f:
            f.write(compobj.compress(object_header(type_num, len(data))))
            f.write(compobj.compress(data))
            f.write(compobj.flush())
        return hexsha


def _parse_loose_object(text: bytes, path: str) -> tuple[int, bytes]:
    header, sep, data = text.partition(b"\0")
    if not sep:
        raise FormatError(f"{path}: missing NUL after object header")
    type_name, _, size_text = header.partition(b" ")
    try:
        type_num = ObjectType.from_type_name(type_name)
    except ValueError as exc:
        raise FormatError(f"{path}: {exc}") from exc
    if not size_text.isdigit() or (len(size_text) > 1 and size_text.startswith(b"0")):
        raise FormatError(f"{path}: size is not in canonical format")
    if int(size_text) != len(data):
        raise FormatError(
            f"{path}: object size {len(data)} does not match header {size_text!r}"
        )
    return type_num, data


class MemoryObjectStore(BaseObjectStore):
    """Object store that keeps all objects in memory."""

    def __init__(self) -> None:
        """Initialize a MemoryObjectStore.

        Creates an empty in-memory object store.
        """
        self._data: dict[bytes, tuple[int, bytes]] = {}

    def contains_loose(self, sha: bytes) -> bool:
        """Check if a particular object is present by SHA1 and is loose."""
        return _to_hexsha(sha) in self._data

    def __iter__(self) -> Iterator[bytes]:
        """Iterate over the SHAs that are present in this store."""
        return iter(self._data.keys())

    def __len__(self) -> int:
        return len(self._data)

    def get_raw(self, name: bytes) -> tuple[int, bytes]:
        """Obtain the raw text for an object.

        Args:
          name: sha for the object.
        Returns: tuple with numeric type and object contents.
        """
        return self._data[_to_hexsha(name)]

    def __delitem__(self, name: bytes) -> None:
        """Delete an object from this store, for testing only."""
        del self._data[_to_hexsha(name)]

    def add_object(self, type_num: int, data: bytes) -> bytes:
        """Add a single object to this object store."""
        hexsha = sha_to_hex(obj_sha(type_num, data))
        self._data.setdefault(hexsha, (ObjectType(type_num), bytes(data)))
        return hexsha
