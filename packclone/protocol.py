# protocol.py -- Shared parts of the git protocols
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

"""Generic functions for talking the git smart protocol over HTTP."""

__all__ = [
    "CAPABILITIES_REF",
    "CAPABILITY_AGENT",
    "CAPABILITY_SIDE_BAND_64K",
    "CAPABILITY_SYMREF",
    "FLUSH_PKT",
    "MAX_PKT_PAYLOAD",
    "NAK_LINE",
    "PACK_MAGIC",
    "SIDE_BAND_CHANNEL_DATA",
    "SIDE_BAND_CHANNEL_FATAL",
    "SIDE_BAND_CHANNEL_PROGRESS",
    "Protocol",
    "demux_side_band",
    "extract_capabilities",
    "iter_pkt_lines",
    "parse_capability",
    "pkt_line",
    "pkt_seq",
    "read_side_band_data",
]

import logging
import string
from collections.abc import Callable, Iterable, Iterator

from .errors import GitProtocolError, HangupException, RemoteError

logger = logging.getLogger(__name__)

FLUSH_PKT = b"0000"

# The length prefix is four hex digits and counts itself.
MAX_PKT_LEN = 0xFFF0
MAX_PKT_PAYLOAD = MAX_PKT_LEN - 4

# pack data
SIDE_BAND_CHANNEL_DATA = 1
# progress messages
SIDE_BAND_CHANNEL_PROGRESS = 2
# fatal error message just before stream aborts
SIDE_BAND_CHANNEL_FATAL = 3

CAPABILITY_SIDE_BAND_64K = b"side-band-64k"
CAPABILITY_AGENT = b"agent"
CAPABILITY_SYMREF = b"symref"

# Magic ref that is used to attach capabilities to when
# there are no refs.
CAPABILITIES_REF = b"capabilities^{}"

NAK_LINE = b"NAK\n"
PACK_MAGIC = b"PACK"

_HEXDIGITS = frozenset(string.hexdigits.encode("ascii"))


def pkt_line(data: bytes | None) -> bytes:
    """Wrap data in a pkt-line.

    Args:
      data: The data to wrap, as bytes or None.
    Returns: The data prefixed with its length in pkt-line format; if data was
        None or empty, returns the flush-pkt ('0000').
    Raises:
      ValueError: if data does not fit in a single pkt-line
    """
    if not data:
        return FLUSH_PKT
    if len(data) > MAX_PKT_PAYLOAD:
        raise ValueError(f"pkt-line payload too long: {len(data)} bytes")
    return ("%04x" % (len(data) + 4)).encode("ascii") + data


def pkt_seq(*seq: bytes | None) -> bytes:
    """Wrap a sequence of data in pkt-lines, followed by a flush-pkt.

    Args:
      seq: An iterable of data to wrap
    """
    return b"".join([pkt_line(s) for s in seq]) + FLUSH_PKT


def parse_capability(capability: bytes) -> tuple[bytes, bytes | None]:
    """Split a capability into its name and optional value."""
    parts = capability.split(b"=", 1)
    if len(parts) == 1:
        return (parts[0], None)
    return (parts[0], parts[1])


def extract_capabilities(text: bytes) -> tuple[bytes, list[bytes]]:
    """Extract a capabilities list from a string, if present.

    Args:
      text: String to extract from
    Returns: Tuple with text with capabilities removed and list of capabilities
    """
    if b"\0" not in text:
        return text, []
    text, capabilities = text.rstrip().split(b"\0", 1)
    return (text, capabilities.strip().split(b" "))


class Protocol:
    """Reader for pkt-lines arriving in arbitrarily sized chunks.

    Parts of the git wire protocol use 'pkt-lines' to communicate. A pkt-line
    consists of the length of the line as a 4-byte hex string, followed by the
    payload data. The length includes the 4-byte header. The special line
    '0000' indicates the end of a section of input and is called a 'flush-pkt'.

    The chunks can be split anywhere, including inside the length header;
    bytes belonging to an incomplete frame are carried over until the next
    chunk arrives. After the pkt-line part of a response, the rest of the
    stream can be read raw with read_remaining().
    """

    def __init__(self, chunks: Iterable[bytes]) -> None:
        """Initialize a Protocol.

        Args:
          chunks: Iterable of byte strings, e.g. an HTTP response stream
        """
        self._chunks = iter(chunks)
        self._buf = bytearray()
        self._exhausted = False

    def _fill(self, size: int) -> bool:
        """Read chunks until at least size bytes are buffered.

        Returns: False if the stream ended first
        """
        while len(self._buf) < size:
            if self._exhausted:
                return False
            try:
                chunk = next(self._chunks)
            except StopIteration:
                self._exhausted = True
                return False
            self._buf += chunk
        return True

    def _take(self, size: int) -> bytes:
        data = bytes(self._buf[:size])
        del self._buf[:size]
        return data

    def peek(self, size: int) -> bytes:
        """Return up to size upcoming bytes without consuming them."""
        self._fill(size)
        return bytes(self._buf[:size])

    def eof(self) -> bool:
        """Check whether the stream has been consumed completely."""
        return not self._fill(1)

    def read_remaining(self) -> bytes:
        """Consume and return everything left in the stream."""
        for chunk in self._chunks:
            self._buf += chunk
        self._exhausted = True
        return self._take(len(self._buf))

    def read_pkt_line(self) -> bytes | None:
        """Read a single pkt-line.

        Returns: The payload of the pkt-line, or None for a flush-pkt
        Raises:
          HangupException: if the stream ends before a complete pkt-line
          GitProtocolError: if the length header is invalid
        """
        if not self._fill(4):
            if self._buf:
                raise HangupException(
                    f"truncated pkt-line header {bytes(self._buf)!r}"
                )
            raise HangupException()
        sizestr = bytes(self._buf[:4])
        if not all(c in _HEXDIGITS for c in sizestr):
            raise GitProtocolError(f"Invalid pkt-line length {sizestr!r}")
        size = int(sizestr, 16)
        if size == 0:
            self._take(4)
            return None
        if size < 4:
            raise GitProtocolError(f"Invalid pkt-line length {sizestr!r}")
        if not self._fill(size):
            raise HangupException(
                f"expected {size} bytes in pkt-line, got {len(self._buf)}"
            )
        return self._take(size)[4:]

    def read_pkt_seq(self) -> Iterator[bytes]:
        """Read a sequence of pkt-lines from the stream.

        Returns: Yields each line of data up to but not including the next
            flush-pkt.
        """
        pkt = self.read_pkt_line()
        while pkt is not None:
            yield pkt
            pkt = self.read_pkt_line()

    def __iter__(self) -> Iterator[bytes | None]:
        """Yield frames until the stream is exhausted cleanly."""
        while not self.eof():
            yield self.read_pkt_line()


def iter_pkt_lines(chunks: Iterable[bytes]) -> Iterator[bytes | None]:
    """Decode pkt-lines lazily from a chunked byte stream.

    Flush-pkts are yielded as None.
    """
    return iter(Protocol(chunks))


def read_side_band_data(
    pkt_seq: Iterable[bytes | None],
) -> Iterator[tuple[int, bytes]]:
    """Read per-channel data.

    This requires the side-band-64k capability. Flush-pkts are skipped.

    Args:
      pkt_seq: Sequence of packets to read
    Raises:
      GitProtocolError: on an empty packet or an unknown channel
    """
    for pkt in pkt_seq:
        if pkt is None:
            continue
        if not pkt:
            raise GitProtocolError("empty side-band packet")
        channel = pkt[0]
        if channel not in (
            SIDE_BAND_CHANNEL_DATA,
            SIDE_BAND_CHANNEL_PROGRESS,
            SIDE_BAND_CHANNEL_FATAL,
        ):
            raise GitProtocolError(f"Invalid sideband channel {channel}")
        yield channel, pkt[1:]


def demux_side_band(
    pkt_seq: Iterable[bytes | None],
    progress: Callable[[bytes], None] | None = None,
) -> bytes:
    """Collect the pack data from a side-band multiplexed stream.

    Args:
      pkt_seq: Sequence of packets to read
      progress: Optional callback receiving progress messages
    Returns: The channel 1 payloads, concatenated in arrival order
    Raises:
      RemoteError: as soon as the remote sends a message on channel 3
    """
    pack_data = []
    for channel, payload in read_side_band_data(pkt_seq):
        if channel == SIDE_BAND_CHANNEL_DATA:
            pack_data.append(payload)
        elif channel == SIDE_BAND_CHANNEL_PROGRESS:
            logger.debug(
                "remote: %s", payload.decode("utf-8", "replace").rstrip("\r\n")
            )
            if progress is not None:
                progress(payload)
        else:
            raise RemoteError(message=payload.decode("utf-8", "replace").strip())
    return b"".join(pack_data)
