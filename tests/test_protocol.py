# test_protocol.py -- Tests for the pkt-line and side-band codecs
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

"""Tests for the smart protocol utility functions."""

from packclone.errors import GitProtocolError, HangupException, RemoteError
from packclone.protocol import (
    MAX_PKT_PAYLOAD,
    Protocol,
    demux_side_band,
    extract_capabilities,
    iter_pkt_lines,
    parse_capability,
    pkt_line,
    pkt_seq,
    read_side_band_data,
)

from . import TestCase


class PktLineTests(TestCase):
    def test_data(self) -> None:
        self.assertEqual(b"000ahello\n", pkt_line(b"hello\n"))

    def test_flush(self) -> None:
        self.assertEqual(b"0000", pkt_line(None))

    def test_empty_is_flush(self) -> None:
        self.assertEqual(b"0000", pkt_line(b""))

    def test_lowercase_hex(self) -> None:
        self.assertEqual(b"00ff", pkt_line(b"x" * 251)[:4])

    def test_max_payload(self) -> None:
        line = pkt_line(b"x" * MAX_PKT_PAYLOAD)
        self.assertEqual(b"fff0", line[:4])
        self.assertRaises(ValueError, pkt_line, b"x" * (MAX_PKT_PAYLOAD + 1))

    def test_pkt_seq(self) -> None:
        self.assertEqual(b"0007foo0007bar0000", pkt_seq(b"foo", b"bar"))


class ProtocolTests(TestCase):
    def test_read_pkt_line(self) -> None:
        proto = Protocol([b"0008cmd 0000"])
        self.assertEqual(b"cmd ", proto.read_pkt_line())
        self.assertEqual(None, proto.read_pkt_line())
        self.assertTrue(proto.eof())

    def test_read_pkt_seq(self) -> None:
        proto = Protocol([b"0008cmd 0005l0000"])
        self.assertEqual([b"cmd ", b"l"], list(proto.read_pkt_seq()))

    def test_uppercase_length(self) -> None:
        proto = Protocol([b"000A" + b"hello\n"])
        self.assertEqual(b"hello\n", proto.read_pkt_line())

    def test_split_anywhere(self) -> None:
        stream = pkt_line(b"first\n") + pkt_line(None) + pkt_line(b"second line\n")
        expected = [b"first\n", None, b"second line\n"]
        for i in range(len(stream) + 1):
            chunks = [stream[:i], stream[i:]]
            self.assertEqual(expected, list(iter_pkt_lines(chunks)), i)

    def test_one_byte_chunks(self) -> None:
        stream = pkt_line(b"abc") + pkt_line(b"defg")
        chunks = [stream[i : i + 1] for i in range(len(stream))]
        self.assertEqual([b"abc", b"defg"], list(iter_pkt_lines(chunks)))

    def test_invalid_length(self) -> None:
        proto = Protocol([b"00zzabc"])
        self.assertRaises(GitProtocolError, proto.read_pkt_line)

    def test_reserved_lengths(self) -> None:
        for header in (b"0001", b"0002", b"0003"):
            proto = Protocol([header + b"xyz"])
            self.assertRaises(GitProtocolError, proto.read_pkt_line)

    def test_truncated_payload(self) -> None:
        proto = Protocol([b"0100too short"])
        self.assertRaises(HangupException, proto.read_pkt_line)

    def test_truncated_header(self) -> None:
        proto = Protocol([b"00"])
        self.assertRaises(HangupException, proto.read_pkt_line)

    def test_eof_after_flush(self) -> None:
        proto = Protocol([b"0000"])
        self.assertFalse(proto.eof())
        self.assertEqual(None, proto.read_pkt_line())
        self.assertTrue(proto.eof())
        self.assertRaises(HangupException, proto.read_pkt_line)

    def test_peek_and_read_remaining(self) -> None:
        proto = Protocol([b"0008NAK\n", b"PA", b"CKrest"])
        self.assertEqual(b"NAK\n", proto.read_pkt_line())
        self.assertEqual(b"PACK", proto.peek(4))
        self.assertEqual(b"PACKrest", proto.read_remaining())
        self.assertTrue(proto.eof())


class CapabilitiesTests(TestCase):
    def test_plain(self) -> None:
        self.assertEqual((b"bla", []), extract_capabilities(b"bla"))

    def test_caps(self) -> None:
        self.assertEqual(
            (b"bla", [b"la"]), extract_capabilities(b"bla\0la")
        )
        self.assertEqual(
            (b"bla", [b"la", b"side-band-64k"]),
            extract_capabilities(b"bla\0la side-band-64k\n"),
        )

    def test_parse_capability(self) -> None:
        self.assertEqual((b"thin-pack", None), parse_capability(b"thin-pack"))
        self.assertEqual(
            (b"symref", b"HEAD:refs/heads/main"),
            parse_capability(b"symref=HEAD:refs/heads/main"),
        )


class SideBandTests(TestCase):
    def test_read_side_band_data(self) -> None:
        frames = [b"\x01PACK", None, b"\x02progress", b"\x01more"]
        self.assertEqual(
            [(1, b"PACK"), (2, b"progress"), (1, b"more")],
            list(read_side_band_data(frames)),
        )

    def test_unknown_channel(self) -> None:
        self.assertRaises(
            GitProtocolError, list, read_side_band_data([b"\x04data"])
        )

    def test_empty_packet(self) -> None:
        self.assertRaises(GitProtocolError, list, read_side_band_data([b""]))

    def test_demux(self) -> None:
        messages = []
        frames = [b"\x01PA", b"\x02Counting objects\n", b"\x01CK", None]
        self.assertEqual(b"PACK", demux_side_band(frames, messages.append))
        self.assertEqual([b"Counting objects\n"], messages)

    def test_demux_without_progress(self) -> None:
        self.assertEqual(b"ab", demux_side_band([b"\x02hi", b"\x01a", b"\x01b"]))

    def test_demux_fatal(self) -> None:
        frames = [b"\x01PA", b"\x03access denied\n", b"\x01CK"]
        with self.assertRaises(RemoteError) as cm:
            demux_side_band(frames)
        self.assertEqual("access denied", cm.exception.message)
