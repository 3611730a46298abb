# utils.py -- Test utilities for packclone.
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

"""Utility functions common to packclone tests.

Packs are written by hand here, since packclone itself only reads them.
"""

import zlib
from collections.abc import Sequence
from hashlib import sha1
from io import BytesIO

from urllib3.response import HTTPResponse

from packclone.objects import ObjectType, hex_to_sha, obj_sha, sha_to_hex
from packclone.pack import DeltaCopy, DeltaInsert
from packclone.protocol import pkt_line

OFS_DELTA = ObjectType.OFS_DELTA
REF_DELTA = ObjectType.REF_DELTA

AUTHOR = b"A U Thor <author@example.com> 1700000000 +0000"


def make_sha(type_num: int, data: bytes) -> bytes:
    """Return the hex SHA of an object."""
    return sha_to_hex(obj_sha(type_num, data))


def make_tree(entries: Sequence[tuple[int, bytes, bytes]]) -> bytes:
    """Serialize a tree from (mode, name, hex sha) tuples."""
    return b"".join(
        b"%o %s\0%s" % (mode, name, hex_to_sha(sha))
        for (mode, name, sha) in sorted(entries, key=lambda e: e[1])
    )


def make_commit(
    tree: bytes, parents: Sequence[bytes] = (), message: bytes = b"Test commit\n"
) -> bytes:
    """Serialize a commit pointing at a tree."""
    lines = [b"tree " + tree]
    lines.extend(b"parent " + p for p in parents)
    lines.append(b"author " + AUTHOR)
    lines.append(b"committer " + AUTHOR)
    return b"\n".join(lines) + b"\n\n" + message


def make_tag(target: bytes, target_type: bytes, name: bytes) -> bytes:
    """Serialize an annotated tag."""
    return (
        b"object " + target + b"\n"
        b"type " + target_type + b"\n"
        b"tag " + name + b"\n"
        b"tagger " + AUTHOR + b"\n\n"
        b"Tag " + name + b"\n"
    )


def encode_object_header(type_num: int, size: int) -> bytes:
    """Encode the variable-length header of a pack entry."""
    c = (type_num << 4) | (size & 0x0F)
    size >>= 4
    ret = bytearray()
    while size:
        ret.append(c | 0x80)
        c = size & 0x7F
        size >>= 7
    ret.append(c)
    return bytes(ret)


def encode_ofs_distance(distance: int) -> bytes:
    """Encode an ofs-delta base distance."""
    ret = bytearray([distance & 0x7F])
    distance >>= 7
    while distance:
        distance -= 1
        ret.insert(0, 0x80 | (distance & 0x7F))
        distance >>= 7
    return bytes(ret)


def _encode_size(size: int) -> bytes:
    ret = bytearray()
    c = size & 0x7F
    size >>= 7
    while size:
        ret.append(c | 0x80)
        c = size & 0x7F
        size >>= 7
    ret.append(c)
    return bytes(ret)


def encode_delta(
    src_size: int, dest_size: int, instructions: Sequence[DeltaCopy | DeltaInsert]
) -> bytes:
    """Encode delta instructions, preceded by the source and target sizes."""
    out = [_encode_size(src_size), _encode_size(dest_size)]
    for instruction in instructions:
        if isinstance(instruction, DeltaInsert):
            assert 0 < len(instruction.data) < 0x80
            out.append(bytes([len(instruction.data)]) + instruction.data)
            continue
        offset, length = instruction
        if length == 0x10000:
            length = 0
        cmd = 0x80
        args = bytearray()
        for i in range(4):
            byte = (offset >> (i * 8)) & 0xFF
            if byte:
                cmd |= 1 << i
                args.append(byte)
        for i in range(3):
            byte = (length >> (i * 8)) & 0xFF
            if byte:
                cmd |= 1 << (4 + i)
                args.append(byte)
        out.append(bytes([cmd]) + bytes(args))
    return b"".join(out)


def create_delta(base: bytes, target: bytes) -> bytes:
    """Create a delta that reuses the common prefix of base and target."""
    prefix = 0
    while prefix < min(len(base), len(target)) and base[prefix] == target[prefix]:
        prefix += 1
    instructions: list[DeltaCopy | DeltaInsert] = []
    if prefix:
        instructions.append(DeltaCopy(0, prefix))
    rest = target[prefix:]
    for i in range(0, len(rest), 0x7F):
        instructions.append(DeltaInsert(rest[i : i + 0x7F]))
    return encode_delta(len(base), len(target), instructions)


def build_pack(
    entries: Sequence[tuple[int, bytes] | tuple[int, bytes, int | bytes]],
    *,
    trailer: bool = True,
) -> bytes:
    """Write a pack from a list of entries.

    Each entry is (type_num, body) for full objects, (OFS_DELTA, delta,
    index of the base entry) or (REF_DELTA, delta, hex SHA of the base).

    Returns: The pack contents
    """
    data = bytearray(b"PACK" + (2).to_bytes(4, "big") + len(entries).to_bytes(4, "big"))
    offsets = []
    for entry in entries:
        type_num, body = entry[0], entry[1]
        offset = len(data)
        offsets.append(offset)
        data += encode_object_header(type_num, len(body))
        if type_num == OFS_DELTA:
            base = entry[2]  # type: ignore[misc]
            assert isinstance(base, int)
            data += encode_ofs_distance(offset - offsets[base])
        elif type_num == REF_DELTA:
            base = entry[2]  # type: ignore[misc]
            assert isinstance(base, bytes)
            data += hex_to_sha(base)
        data += zlib.compress(body)
    if trailer:
        data += sha1(bytes(data)).digest()
    return bytes(data)


def side_band(channel: int, data: bytes) -> bytes:
    """Wrap data in side-band pkt-lines on a channel."""
    return b"".join(
        pkt_line(bytes([channel]) + data[i : i + 65515])
        for i in range(0, len(data), 65515)
    )


class PoolManagerMock:
    """Stand-in for urllib3.PoolManager that serves canned responses.

    responses maps (method, url) to (status, headers, body).
    """

    def __init__(
        self, responses: dict[tuple[str, str], tuple[int, dict[str, str], bytes]]
    ) -> None:
        self.headers: dict[str, str] = {}
        self.responses = responses
        self.requests: list[tuple[str, str, dict[str, str], bytes | None]] = []

    def request(self, method, url, headers=None, body=None, preload_content=True, **kwargs):
        self.requests.append((method, url, dict(headers or {}), body))
        status, resp_headers, resp_body = self.responses[(method, url)]
        return HTTPResponse(
            body=BytesIO(resp_body),
            headers=resp_headers,
            request_method=method,
            request_url=url,
            preload_content=preload_content,
            status=status,
        )
