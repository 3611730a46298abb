# pack.py -- For dealing with packed git objects.
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

"""Classes for dealing with packed git objects.

A pack is a compact representation of a bunch of objects, stored
using deltas where possible.

A pack fetched by a clone is held in memory as a single byte string. It
starts with a 12-byte header, followed by the entries back to back, followed
by a SHA-1 of everything before it. Each entry is a variable-length header
and a zlib stream; delta entries additionally name their base, either by a
backwards offset within the pack (ofs-delta) or by SHA (ref-delta).

Parsing happens in two passes. PackData.iter_unpacked() walks the entries in
stream order and inflates them. DeltaChainIterator then hands out the full
objects, resolving each delta as soon as its base is known, so each object
is reconstructed exactly once whatever order the server sent the entries in.
"""

__all__ = [
    "DELTA_TYPES",
    "PACK_HEADER_SIZE",
    "DeltaChainIterator",
    "DeltaCopy",
    "DeltaInsert",
    "PackData",
    "UnpackedObject",
    "UnresolvedDeltas",
    "apply_delta",
    "parse_delta",
    "read_pack_header",
    "read_zlib",
    "take_msb_bytes",
    "unpack_object",
    "unpack_object_header",
]

import logging
import zlib
from collections import defaultdict
from collections.abc import Callable, Iterator
from hashlib import sha1
from itertools import chain
from struct import unpack_from
from typing import NamedTuple

from .errors import ApplyDeltaError, ChecksumMismatch, FormatError
from .objects import ObjectType, obj_sha, sha_to_hex

logger = logging.getLogger(__name__)

OFS_DELTA = ObjectType.OFS_DELTA
REF_DELTA = ObjectType.REF_DELTA

DELTA_TYPES = (OFS_DELTA, REF_DELTA)

PACK_HEADER_SIZE = 12
PACK_TRAILER_SIZE = 20

# Compressed bytes first fed to zlib for an entry, doubled up to _ZLIB_BUFSIZE
_ZLIB_INITIAL_BUFSIZE = 4096
_ZLIB_BUFSIZE = 65536

ResolveExtRefFn = Callable[[bytes], tuple[int, bytes]]


class UnresolvedDeltas(FormatError):
    """Delta objects could not be resolved."""

    def __init__(self, bases: list[bytes | int]) -> None:
        """Initialize UnresolvedDeltas exception.

        Args:
            bases: Hex SHAs (ref-delta) or pack offsets (ofs-delta) of the
              bases that never became available
        """
        self.bases = bases
        names = ", ".join(
            b.decode("ascii") if isinstance(b, bytes) else f"offset {b}"
            for b in bases
        )
        FormatError.__init__(self, f"Unresolved deltas, missing bases: {names}")


def take_msb_bytes(data: bytes, offset: int) -> tuple[list[int], int]:
    """Read bytes marked with most significant bit.

    Args:
      data: Buffer to read from
      offset: Offset to start reading at
    Returns:
      Tuple of (list of bytes read, offset just past them)
    Raises:
      FormatError: if the buffer ends while the continuation bit is set
    """
    ret: list[int] = []
    while len(ret) == 0 or ret[-1] & 0x80:
        if offset >= len(data):
            raise FormatError("truncated variable-length number")
        ret.append(data[offset])
        offset += 1
    return ret, offset


class UnpackedObject:
    """Class encapsulating an object unpacked from a pack file.

    These objects are created by unpack_object. obj_type_num and obj_data
    are set straight away for full objects and by DeltaChainIterator for
    deltas, once their base has been resolved.
    """

    __slots__ = [
        "_sha",  # Cached binary SHA.
        "decomp_data",  # Decompressed entry body (raw delta for deltas).
        "delta_base",  # Delta base offset or SHA.
        "obj_data",  # Decompressed and delta-resolved contents.
        "obj_type_num",  # Type of this object.
        "offset",  # Offset in its pack.
        "pack_type_num",  # Type of this object in the pack (may be a delta).
    ]

    obj_type_num: int | None
    obj_data: bytes | None
    delta_base: None | bytes | int
    decomp_data: bytes
    offset: int | None
    pack_type_num: int
    _sha: bytes | None

    def __init__(
        self,
        pack_type_num: int,
        *,
        delta_base: None | bytes | int = None,
        decomp_data: bytes = b"",
        offset: int | None = None,
    ) -> None:
        """Initialize an UnpackedObject.

        Args:
            pack_type_num: Type number of this object in the pack
            delta_base: Delta base (offset distance or raw SHA) for deltas
            decomp_data: Decompressed entry body
            offset: Offset in the pack
        """
        self.offset = offset
        self._sha = None
        self.pack_type_num = pack_type_num
        self.delta_base = delta_base
        self.decomp_data = decomp_data
        if pack_type_num in DELTA_TYPES:
            self.obj_type_num = None
            self.obj_data = None
        else:
            self.obj_type_num = pack_type_num
            self.obj_data = decomp_data

    def sha(self) -> bytes:
        """Return the binary SHA of this object."""
        if self._sha is None:
            assert self.obj_type_num is not None and self.obj_data is not None
            self._sha = obj_sha(self.obj_type_num, self.obj_data)
        return self._sha

    def hexsha(self) -> bytes:
        """Return the hex SHA of this object."""
        return sha_to_hex(self.sha())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnpackedObject):
            return False
        for slot in self.__slots__:
            if getattr(self, slot) != getattr(other, slot):
                return False
        return True

    def __repr__(self) -> str:
        data = [
            f"{s}={getattr(self, s)!r}"
            for s in ("offset", "pack_type_num", "delta_base", "obj_type_num")
        ]
        return "{}({})".format(self.__class__.__name__, ", ".join(data))


def read_pack_header(data: bytes) -> tuple[int, int]:
    """Read the header of a pack file.

    Args:
      data: Pack contents, at least the first 12 bytes
    Returns: Tuple of (pack version, number of objects)
    Raises:
      FormatError: if the header is short or invalid
    """
    if len(data) < PACK_HEADER_SIZE:
        raise FormatError("file too short to contain pack")
    if data[:4] != b"PACK":
        raise FormatError(f"Invalid pack header {bytes(data[:4])!r}")
    (version,) = unpack_from(">L", data, 4)
    if version != 2:
        raise FormatError(f"Version was {version}")
    (num_objects,) = unpack_from(">L", data, 8)
    return (version, num_objects)


def unpack_object_header(data: bytes, offset: int = 0) -> tuple[int, int, int]:
    """Decode the variable-length header of a pack entry.

    Args:
      data: Buffer to read from
      offset: Offset of the entry
    Returns: Tuple of (type number, inflated size, bytes consumed)
    Raises:
      FormatError: on a truncated header or an invalid type number
    """
    raw, end = take_msb_bytes(data, offset)
    type_num = (raw[0] >> 4) & 0x07
    size = raw[0] & 0x0F
    for i, byte in enumerate(raw[1:]):
        size += (byte & 0x7F) << ((i * 7) + 4)
    try:
        ObjectType(type_num)
    except ValueError:
        raise FormatError(
            f"Invalid object type {type_num} at offset {offset}"
        ) from None
    return type_num, size, end - offset


def read_zlib(
    data: bytes, offset: int, size: int, buffer_size: int = _ZLIB_BUFSIZE
) -> tuple[bytes, int]:
    """Inflate the zlib stream starting at offset.

    The compressed length is not stored anywhere in a pack, so the stream is
    fed to zlib piecewise until it reports the end marker; whatever zlib did
    not use belongs to the next entry.

    Args:
      data: Buffer to read from
      offset: Start of the zlib stream
      size: Expected inflated size
      buffer_size: Maximum number of compressed bytes fed to zlib at once
    Returns: Tuple of (inflated data, compressed bytes consumed)
    Raises:
      FormatError: if the stream is corrupt, truncated, or inflates to a
        size other than the expected one
    """
    decomp_obj = zlib.decompressobj()
    view = memoryview(data)
    end = len(data)
    pos = offset
    decomp_chunks = []
    chunk_size = min(_ZLIB_INITIAL_BUFSIZE, buffer_size)
    try:
        while not decomp_obj.eof:
            if pos >= end:
                raise FormatError(f"EOF before end of zlib stream at offset {offset}")
            add = view[pos : pos + chunk_size]
            pos += len(add)
            decomp_chunks.append(decomp_obj.decompress(add))
            chunk_size = min(chunk_size * 2, buffer_size)
    except zlib.error as exc:
        raise FormatError(f"corrupt zlib stream at offset {offset}: {exc}") from exc
    pos -= len(decomp_obj.unused_data)
    decomp = b"".join(decomp_chunks)
    if len(decomp) != size:
        raise FormatError(
            f"decompressed data does not match expected size at offset {offset}: "
            f"{len(decomp)} != {size}"
        )
    return decomp, pos - offset


def unpack_object(data: bytes, offset: int) -> tuple[UnpackedObject, int]:
    """Unpack the pack entry at offset.

    Args:
      data: Pack contents
      offset: Offset of the entry
    Returns: A tuple of (unpacked, end), where end is the offset of the next
        entry and unpacked is an UnpackedObject with offset, pack_type_num,
        delta_base (for deltas) and decomp_data set.
    Raises:
      FormatError: if the entry is malformed
    """
    type_num, size, pos = unpack_object_header(data, offset)
    pos += offset

    delta_base: int | bytes | None
    if type_num == OFS_DELTA:
        raw, pos = take_msb_bytes(data, pos)
        delta_base_offset = raw[0] & 0x7F
        for byte in raw[1:]:
            delta_base_offset += 1
            delta_base_offset <<= 7
            delta_base_offset += byte & 0x7F
        if delta_base_offset <= 0 or offset - delta_base_offset < PACK_HEADER_SIZE:
            raise FormatError(
                f"Invalid delta base distance {delta_base_offset} at offset {offset}"
            )
        delta_base = delta_base_offset
    elif type_num == REF_DELTA:
        if pos + 20 > len(data):
            raise FormatError(f"truncated delta base at offset {offset}")
        delta_base = bytes(data[pos : pos + 20])
        pos += 20
    else:
        delta_base = None

    decomp, comp_len = read_zlib(data, pos, size)
    unpacked = UnpackedObject(
        type_num, delta_base=delta_base, decomp_data=decomp, offset=offset
    )
    return unpacked, pos + comp_len


class DeltaCopy(NamedTuple):
    """Copy length bytes at offset of the base into the target."""

    offset: int
    length: int


class DeltaInsert(NamedTuple):
    """Append literal data to the target."""

    data: bytes


def _delta_decode_size(delta: bytes, index: int) -> tuple[int, int]:
    size = 0
    i = 0
    while True:
        if index >= len(delta):
            raise ApplyDeltaError("truncated delta header")
        cmd = delta[index]
        index += 1
        size |= (cmd & ~0x80) << i
        i += 7
        if not cmd & 0x80:
            break
    return size, index


def parse_delta(delta: bytes) -> tuple[int, int, list[DeltaCopy | DeltaInsert]]:
    """Decode delta instructions.

    Args:
      delta: Raw delta, as stored in a pack entry
    Returns: Tuple of (source size, target size, instructions)
    Raises:
      ApplyDeltaError: if the delta is malformed
    """
    src_size, index = _delta_decode_size(delta, 0)
    dest_size, index = _delta_decode_size(delta, index)
    delta_length = len(delta)
    instructions: list[DeltaCopy | DeltaInsert] = []
    while index < delta_length:
        cmd = delta[index]
        index += 1
        if cmd & 0x80:
            cp_off = 0
            for i in range(4):
                if cmd & (1 << i):
                    if index >= delta_length:
                        raise ApplyDeltaError("truncated copy instruction")
                    cp_off |= delta[index] << (i * 8)
                    index += 1
            cp_size = 0
            for i in range(3):
                if cmd & (1 << (4 + i)):
                    if index >= delta_length:
                        raise ApplyDeltaError("truncated copy instruction")
                    cp_size |= delta[index] << (i * 8)
                    index += 1
            if cp_size == 0:
                cp_size = 0x10000
            instructions.append(DeltaCopy(cp_off, cp_size))
        elif cmd != 0:
            if index + cmd > delta_length:
                raise ApplyDeltaError("truncated insert instruction")
            instructions.append(DeltaInsert(bytes(delta[index : index + cmd])))
            index += cmd
        else:
            raise ApplyDeltaError("Invalid opcode 0")
    return src_size, dest_size, instructions


def apply_delta(src_buf: bytes, delta: bytes) -> bytes:
    """Based on the similar function in git's patch-delta.c.

    Args:
      src_buf: Source buffer
      delta: Delta instructions
    Returns: The reconstructed target
    Raises:
      ApplyDeltaError: if the delta does not fit the source or is malformed
    """
    src_size, dest_size, instructions = parse_delta(delta)
    if src_size != len(src_buf):
        raise ApplyDeltaError(
            f"Unexpected source buffer size: {src_size} vs {len(src_buf)}"
        )
    out = []
    for instruction in instructions:
        if isinstance(instruction, DeltaCopy):
            cp_off, cp_size = instruction
            if cp_off + cp_size > src_size:
                raise ApplyDeltaError(
                    f"copy out of range: {cp_off}+{cp_size} > {src_size}"
                )
            out.append(src_buf[cp_off : cp_off + cp_size])
        else:
            out.append(instruction.data)
    result = b"".join(out)
    if dest_size != len(result):
        raise ApplyDeltaError(
            f"dest size incorrect: expected {dest_size}, got {len(result)}"
        )
    return result


class PackData:
    """The data contained in a packfile, held in memory.

    The first 12 bytes are the header: the magic ``PACK``, a 4-byte version
    number and a 4-byte count of objects. Then come the entries; after the
    last entry there may be a 20-byte SHA-1 of everything before it.
    """

    def __init__(self, data: bytes) -> None:
        """Create a PackData object.

        Args:
          data: Complete pack contents
        Raises:
          FormatError: if the header is invalid
        """
        self._data = data
        self.version, self._num_objects = read_pack_header(data)

    def __len__(self) -> int:
        """Returns the number of objects in this pack."""
        return self._num_objects

    @property
    def data(self) -> bytes:
        return self._data

    def iter_unpacked(self) -> Iterator[UnpackedObject]:
        """Walk the entries of the pack in stream order.

        The trailer is checked once the last entry has been read.
        """
        offset = PACK_HEADER_SIZE
        for _ in range(self._num_objects):
            unpacked, offset = unpack_object(self._data, offset)
            yield unpacked
        self._check_trailer(offset)

    def _check_trailer(self, end: int) -> None:
        trailer = self._data[end:]
        if not trailer:
            logger.debug("pack has no trailing checksum")
            return
        if len(trailer) != PACK_TRAILER_SIZE:
            raise FormatError(
                f"{len(trailer)} unexpected bytes after the last pack entry"
            )
        actual = sha1(memoryview(self._data)[:end]).digest()
        if actual != trailer:
            raise ChecksumMismatch(bytes(trailer), actual)

    def get_unpacked_object_at(self, offset: int) -> UnpackedObject:
        """Given an offset in to the packfile return the UnpackedObject."""
        unpacked, _ = unpack_object(self._data, offset)
        return unpacked


class DeltaChainIterator:
    """Iterator over the objects of a pack, resolved along delta chains.

    Each object in the pack is inflated exactly once, regardless of how many
    objects reference it as a delta base. Results are UnpackedObjects with
    obj_type_num and obj_data set.
    """

    def __init__(self, *, resolve_ext_ref: ResolveExtRefFn | None = None) -> None:
        """Initialize DeltaChainIterator.

        Args:
            resolve_ext_ref: Optional function mapping a raw SHA to
              (type_num, data) for ref-delta bases that are not in the pack;
              raises KeyError for unknown objects
        """
        self._resolve_ext_ref = resolve_ext_ref
        self._objects: dict[int, UnpackedObject] = {}
        self._pending_ofs: dict[int, list[int]] = defaultdict(list)
        self._pending_ref: dict[bytes, list[int]] = defaultdict(list)
        self._full_ofs: list[int] = []
        self._ext_refs: list[bytes] = []

    @classmethod
    def for_pack_data(
        cls, pack_data: PackData, resolve_ext_ref: ResolveExtRefFn | None = None
    ) -> "DeltaChainIterator":
        """Create a DeltaChainIterator from pack data.

        All entries are read (and the trailer checked) before this returns.

        Args:
          pack_data: PackData object to iterate
          resolve_ext_ref: Optional function to resolve external refs
        """
        walker = cls(resolve_ext_ref=resolve_ext_ref)
        for unpacked in pack_data.iter_unpacked():
            walker.record(unpacked)
        logger.debug(
            "read %d pack entries, %d of them deltas",
            len(walker._objects),
            len(walker._objects) - len(walker._full_ofs),
        )
        return walker

    def record(self, unpacked: UnpackedObject) -> None:
        """Record an unpacked object for later processing.

        Args:
          unpacked: UnpackedObject to record
        """
        type_num = unpacked.pack_type_num
        offset = unpacked.offset
        assert offset is not None
        self._objects[offset] = unpacked
        if type_num == OFS_DELTA:
            assert isinstance(unpacked.delta_base, int)
            base_offset = offset - unpacked.delta_base
            self._pending_ofs[base_offset].append(offset)
        elif type_num == REF_DELTA:
            assert isinstance(unpacked.delta_base, bytes)
            self._pending_ref[unpacked.delta_base].append(offset)
        else:
            self._full_ofs.append(offset)

    def _walk_all_chains(self) -> Iterator[UnpackedObject]:
        for offset in self._full_ofs:
            yield from self._follow_chain(offset, None, None)
        yield from self._walk_ref_chains()

    def _ensure_no_pending(self) -> None:
        bases: list[bytes | int] = [sha_to_hex(s) for s in self._pending_ref]
        bases.extend(self._pending_ofs)
        if bases:
            raise UnresolvedDeltas(bases)

    def _walk_ref_chains(self) -> Iterator[UnpackedObject]:
        if not self._resolve_ext_ref:
            self._ensure_no_pending()
            return

        for base_sha, pending in sorted(self._pending_ref.items()):
            if base_sha not in self._pending_ref:
                continue
            try:
                type_num, data = self._resolve_ext_ref(base_sha)
            except KeyError:
                # Not an external ref, but may depend on one. Either it will
                # get popped via a _follow_chain call, or we will raise an
                # error below.
                continue
            logger.debug("resolved thin pack base %s", sha_to_hex(base_sha).decode())
            self._ext_refs.append(base_sha)
            self._pending_ref.pop(base_sha)
            for new_offset in pending:
                yield from self._follow_chain(new_offset, type_num, data)

        self._ensure_no_pending()

    def _resolve_object(
        self, offset: int, obj_type_num: int | None, base_data: bytes | None
    ) -> UnpackedObject:
        unpacked = self._objects.pop(offset)
        if base_data is not None:
            assert unpacked.pack_type_num in DELTA_TYPES
            unpacked.obj_type_num = obj_type_num
            unpacked.obj_data = apply_delta(base_data, unpacked.decomp_data)
        return unpacked

    def _follow_chain(
        self, offset: int, obj_type_num: int | None, base_data: bytes | None
    ) -> Iterator[UnpackedObject]:
        todo = [(offset, obj_type_num, base_data)]
        while todo:
            (offset, obj_type_num, base_data) = todo.pop()
            unpacked = self._resolve_object(offset, obj_type_num, base_data)
            yield unpacked

            assert unpacked.offset is not None
            unblocked = chain(
                self._pending_ofs.pop(unpacked.offset, []),
                self._pending_ref.pop(unpacked.sha(), []),
            )
            todo.extend(
                (new_offset, unpacked.obj_type_num, unpacked.obj_data)
                for new_offset in unblocked
            )

    def __iter__(self) -> Iterator[UnpackedObject]:
        """Iterate over objects in the pack."""
        return self._walk_all_chains()

    def ext_refs(self) -> list[bytes]:
        """Return the external bases that were used, as raw SHAs."""
        return self._ext_refs
