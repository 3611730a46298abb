# test_pack.py -- Tests for the handling of git packs.
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

"""Tests for packclone.pack."""

import random
import zlib
from unittest.mock import patch

from packclone.errors import ApplyDeltaError, ChecksumMismatch, FormatError
from packclone.object_store import MemoryObjectStore
from packclone.objects import ObjectType
from packclone.pack import (
    DeltaChainIterator,
    DeltaCopy,
    DeltaInsert,
    PackData,
    UnresolvedDeltas,
    apply_delta,
    parse_delta,
    read_pack_header,
    read_zlib,
    take_msb_bytes,
    unpack_object,
    unpack_object_header,
)

from . import TestCase
from .utils import (
    OFS_DELTA,
    REF_DELTA,
    build_pack,
    create_delta,
    encode_delta,
    encode_object_header,
    make_sha,
)

BLOB = ObjectType.BLOB


class PackHeaderTests(TestCase):
    def test_valid(self) -> None:
        self.assertEqual(
            (2, 3), read_pack_header(b"PACK\x00\x00\x00\x02\x00\x00\x00\x03")
        )

    def test_bad_magic(self) -> None:
        self.assertRaises(
            FormatError, read_pack_header, b"PACX\x00\x00\x00\x02\x00\x00\x00\x00"
        )

    def test_bad_version(self) -> None:
        self.assertRaises(
            FormatError, read_pack_header, b"PACK\x00\x00\x00\x03\x00\x00\x00\x00"
        )

    def test_too_short(self) -> None:
        self.assertRaises(FormatError, read_pack_header, b"PACK\x00\x00")


class ObjectHeaderTests(TestCase):
    def test_blob_two_bytes(self) -> None:
        self.assertEqual((BLOB, 19, 2), unpack_object_header(b"\xb3\x01"))

    def test_commit_two_bytes(self) -> None:
        self.assertEqual((ObjectType.COMMIT, 19, 2), unpack_object_header(b"\x93\x01"))

    def test_single_byte(self) -> None:
        self.assertEqual((ObjectType.TREE, 5, 1), unpack_object_header(b"\x25"))

    def test_offset(self) -> None:
        self.assertEqual((BLOB, 19, 2), unpack_object_header(b"xx\xb3\x01", 2))

    def test_large_size(self) -> None:
        header = encode_object_header(BLOB, 1000000)
        self.assertEqual((BLOB, 1000000, len(header)), unpack_object_header(header))

    def test_invalid_types(self) -> None:
        self.assertRaises(FormatError, unpack_object_header, b"\x05")
        self.assertRaises(FormatError, unpack_object_header, b"\x55")

    def test_truncated(self) -> None:
        self.assertRaises(FormatError, unpack_object_header, b"\xb3")

    def test_take_msb_bytes(self) -> None:
        self.assertEqual(([0x22], 1), take_msb_bytes(b"\x22", 0))
        self.assertEqual(([0x82, 0x22], 2), take_msb_bytes(b"\x82\x22", 0))


class ReadZlibTests(TestCase):
    def test_exact_consumption(self) -> None:
        comp = zlib.compress(b"hello world")
        data = comp + b"next entry"
        self.assertEqual((b"hello world", len(comp)), read_zlib(data, 0, 11))

    def test_small_buffer(self) -> None:
        body = bytes(range(256)) * 8
        comp = zlib.compress(body)
        self.assertEqual(
            (body, len(comp)), read_zlib(b"ab" + comp + b"zz", 2, len(body), buffer_size=3)
        )

    def test_input_grows_from_small_chunk(self) -> None:
        body = random.Random(0).randbytes(20000)
        comp = zlib.compress(body)
        fed = []
        decompressobj = zlib.decompressobj

        class RecordingDecompressor:
            def __init__(self) -> None:
                self._obj = decompressobj()

            def decompress(self, data: bytes) -> bytes:
                fed.append(len(data))
                return self._obj.decompress(data)

            @property
            def eof(self) -> bool:
                return self._obj.eof

            @property
            def unused_data(self) -> bytes:
                return self._obj.unused_data

        with patch("zlib.decompressobj", RecordingDecompressor):
            result = read_zlib(comp + b"x" * 100000, 0, len(body))
        self.assertEqual((body, len(comp)), result)
        self.assertEqual([4096, 8192, 16384], fed)

    def test_size_mismatch(self) -> None:
        self.assertRaises(FormatError, read_zlib, zlib.compress(b"abc"), 0, 4)

    def test_truncated(self) -> None:
        comp = zlib.compress(b"abcdefgh" * 10)
        self.assertRaises(FormatError, read_zlib, comp[:-4], 0, 80)

    def test_corrupt(self) -> None:
        self.assertRaises(FormatError, read_zlib, b"\x00\x01garbage", 0, 3)


class DeltaTests(TestCase):
    def test_parse(self) -> None:
        delta = encode_delta(
            10, 8, [DeltaCopy(2, 5), DeltaInsert(b"xyz")]
        )
        self.assertEqual(
            (10, 8, [DeltaCopy(2, 5), DeltaInsert(b"xyz")]), parse_delta(delta)
        )

    def test_copy_size_zero_means_64k(self) -> None:
        # Copy with offset and size bytes all omitted.
        delta = encode_delta(0x10000, 0x10000, []) + b"\x80"
        self.assertEqual([DeltaCopy(0, 0x10000)], parse_delta(delta)[2])

    def test_apply(self) -> None:
        src = b"the quick brown fox"
        delta = encode_delta(
            len(src), 13, [DeltaCopy(4, 5), DeltaInsert(b" red "), DeltaCopy(16, 3)]
        )
        self.assertEqual(b"quick red fox", apply_delta(src, delta))

    def test_apply_create_delta(self) -> None:
        base = b"line one\nline two\n"
        target = b"line one\nline 2\nline three\n"
        self.assertEqual(target, apply_delta(base, create_delta(base, target)))

    def test_opcode_zero(self) -> None:
        delta = encode_delta(3, 3, [DeltaInsert(b"abc")]) + b"\x00"
        self.assertRaises(ApplyDeltaError, apply_delta, b"abc", delta)

    def test_source_size_mismatch(self) -> None:
        delta = encode_delta(4, 3, [DeltaCopy(0, 3)])
        self.assertRaises(ApplyDeltaError, apply_delta, b"abc", delta)

    def test_target_size_mismatch(self) -> None:
        delta = encode_delta(3, 4, [DeltaCopy(0, 3)])
        self.assertRaises(ApplyDeltaError, apply_delta, b"abc", delta)

    def test_copy_out_of_range(self) -> None:
        delta = encode_delta(3, 4, [DeltaCopy(1, 4)])
        self.assertRaises(ApplyDeltaError, apply_delta, b"abc", delta)

    def test_truncated_insert(self) -> None:
        delta = encode_delta(0, 5, []) + b"\x05ab"
        self.assertRaises(ApplyDeltaError, parse_delta, delta)


class UnpackObjectTests(TestCase):
    def test_full_object(self) -> None:
        pack = build_pack([(BLOB, b"blob contents")])
        unpacked, end = unpack_object(pack, 12)
        self.assertEqual(12, unpacked.offset)
        self.assertEqual(BLOB, unpacked.obj_type_num)
        self.assertEqual(b"blob contents", unpacked.obj_data)
        self.assertEqual(len(pack) - 20, end)
        self.assertEqual(make_sha(BLOB, b"blob contents"), unpacked.hexsha())

    def test_ofs_delta(self) -> None:
        base = b"some base text"
        pack = build_pack([(BLOB, base), (OFS_DELTA, create_delta(base, b"some text"), 0)])
        _, end = unpack_object(pack, 12)
        delta, _ = unpack_object(pack, end)
        self.assertEqual(OFS_DELTA, delta.pack_type_num)
        self.assertEqual(end - 12, delta.delta_base)
        self.assertIsNone(delta.obj_data)

    def test_ofs_delta_before_pack_start(self) -> None:
        # An ofs-delta at offset 12 can not have a base.
        data = b"PACK\x00\x00\x00\x02\x00\x00\x00\x01" + encode_object_header(
            OFS_DELTA, 3
        ) + b"\x01" + zlib.compress(b"abc")
        self.assertRaises(FormatError, unpack_object, data, 12)


class PackDataTests(TestCase):
    def test_counts(self) -> None:
        pack = PackData(build_pack([(BLOB, b"a"), (BLOB, b"b")]))
        self.assertEqual(2, len(pack))
        self.assertEqual(2, pack.version)
        self.assertEqual([b"a", b"b"], [u.obj_data for u in pack.iter_unpacked()])

    def test_no_trailer(self) -> None:
        pack = PackData(build_pack([(BLOB, b"a")], trailer=False))
        self.assertEqual(1, len(list(pack.iter_unpacked())))

    def test_bad_trailer(self) -> None:
        data = build_pack([(BLOB, b"a")])
        data = data[:-1] + bytes([data[-1] ^ 0xFF])
        self.assertRaises(ChecksumMismatch, list, PackData(data).iter_unpacked())

    def test_junk_after_entries(self) -> None:
        data = build_pack([(BLOB, b"a")], trailer=False) + b"junk"
        self.assertRaises(FormatError, list, PackData(data).iter_unpacked())

    def test_truncated_entries(self) -> None:
        data = build_pack([(BLOB, b"a"), (BLOB, b"b")], trailer=False)
        data = data[:12] + data[12:][: len(data) // 3]
        self.assertRaises(FormatError, list, PackData(data).iter_unpacked())

    def test_get_unpacked_object_at(self) -> None:
        pack = PackData(build_pack([(BLOB, b"a")]))
        self.assertEqual(b"a", pack.get_unpacked_object_at(12).obj_data)


class DeltaChainIteratorTests(TestCase):
    def get_objects(self, entries, store=None):
        pack = PackData(build_pack(entries))
        resolve_ext_ref = store.get_raw if store is not None else None
        walker = DeltaChainIterator.for_pack_data(pack, resolve_ext_ref=resolve_ext_ref)
        return {u.hexsha(): (u.obj_type_num, u.obj_data) for u in walker}, walker

    def test_no_deltas(self) -> None:
        objects, _ = self.get_objects([(BLOB, b"one"), (BLOB, b"two")])
        self.assertEqual(
            {
                make_sha(BLOB, b"one"): (BLOB, b"one"),
                make_sha(BLOB, b"two"): (BLOB, b"two"),
            },
            objects,
        )

    def test_ofs_delta_chain(self) -> None:
        v1 = b"version one of the file\n"
        v2 = b"version one of the file\nplus a line\n"
        v3 = b"version one of the file\nplus a line\nand another\n"
        objects, _ = self.get_objects(
            [
                (BLOB, v1),
                (OFS_DELTA, create_delta(v1, v2), 0),
                (OFS_DELTA, create_delta(v2, v3), 1),
            ]
        )
        self.assertEqual(
            {make_sha(BLOB, v): (BLOB, v) for v in (v1, v2, v3)}, objects
        )

    def test_ref_delta_before_base(self) -> None:
        base = b"the base object\n"
        target = b"the base object\nchanged\n"
        objects, walker = self.get_objects(
            [
                (REF_DELTA, create_delta(base, target), make_sha(BLOB, base)),
                (BLOB, base),
            ]
        )
        self.assertEqual(
            {make_sha(BLOB, base): (BLOB, base), make_sha(BLOB, target): (BLOB, target)},
            objects,
        )
        self.assertEqual([], walker.ext_refs())

    def test_delta_keeps_base_type(self) -> None:
        tree1 = b"100644 a\0" + b"\x01" * 20
        tree2 = b"100644 a\0" + b"\x02" * 20
        objects, _ = self.get_objects(
            [(ObjectType.TREE, tree1), (OFS_DELTA, create_delta(tree1, tree2), 0)]
        )
        self.assertEqual(
            (ObjectType.TREE, tree2), objects[make_sha(ObjectType.TREE, tree2)]
        )

    def test_thin_pack_base_from_store(self) -> None:
        store = MemoryObjectStore()
        base = b"base that only the receiver has\n"
        base_sha = store.add_object(BLOB, base)
        target = base + b"more\n"
        objects, walker = self.get_objects(
            [(REF_DELTA, create_delta(base, target), base_sha)], store=store
        )
        self.assertEqual({make_sha(BLOB, target): (BLOB, target)}, objects)
        self.assertEqual([bytes.fromhex(base_sha.decode())], walker.ext_refs())

    def test_missing_ref_base(self) -> None:
        base = b"never sent\n"
        entries = [(REF_DELTA, create_delta(base, base + b"x"), make_sha(BLOB, base))]
        with self.assertRaises(UnresolvedDeltas) as cm:
            self.get_objects(entries)
        self.assertEqual([make_sha(BLOB, base)], cm.exception.bases)
        with self.assertRaises(UnresolvedDeltas):
            self.get_objects(entries, store=MemoryObjectStore())

    def test_circular_ref_deltas(self) -> None:
        a = b"object a\n"
        b = b"object b\n"
        entries = [
            (REF_DELTA, create_delta(b, a), make_sha(BLOB, b)),
            (REF_DELTA, create_delta(a, b), make_sha(BLOB, a)),
        ]
        self.assertRaises(UnresolvedDeltas, self.get_objects, entries)
        self.assertRaises(
            UnresolvedDeltas, self.get_objects, entries, MemoryObjectStore()
        )
