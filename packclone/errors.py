# errors.py -- errors for packclone
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

"""packclone-related exception classes."""

# Please do not add more errors here, but instead add them close to the code
# that raises the error.

import binascii

__all__ = [
    "ApplyDeltaError",
    "ChecksumMismatch",
    "FormatError",
    "GitProtocolError",
    "HangupException",
    "NetworkError",
    "NoSuitableReferenceError",
    "NotBlobError",
    "NotCommitError",
    "NotGitRepository",
    "NotTreeError",
    "RemoteError",
    "WrongObjectException",
]


class NetworkError(Exception):
    """The remote could not be reached, or the connection broke."""


class RemoteError(Exception):
    """The remote was reachable but reported an error.

    Either the HTTP status was not 200 (``status`` is set), or the server
    sent an error message in-band (``message`` is set).
    """

    def __init__(self, message: str | None = None, status: int | None = None) -> None:
        """Initialize a RemoteError.

        Args:
          message: Error text sent by the server, if any
          status: HTTP status code, if the error is a bad response status
        """
        self.message = message
        self.status = status
        if message is not None and status is not None:
            text = f"remote error (HTTP {status}): {message}"
        elif status is not None:
            text = f"unexpected HTTP status {status}"
        else:
            text = f"remote error: {message}"
        Exception.__init__(self, text)


class NotGitRepository(RemoteError):
    """The URL does not point at a git repository."""

    def __init__(self, url: str) -> None:
        """Initialize a NotGitRepository exception.

        Args:
          url: URL that was requested
        """
        self.url = url
        RemoteError.__init__(self, f"{url} is not a git repository", status=404)


class GitProtocolError(Exception):
    """Git protocol exception."""

    def __init__(self, *args: object) -> None:
        """Initialize a GitProtocolError.

        Args:
          *args: Error message and optional additional arguments
        """
        Exception.__init__(self, *args)

    def __eq__(self, other: object) -> bool:
        """Check equality between GitProtocolError instances."""
        return isinstance(other, type(self)) and self.args == other.args


class HangupException(GitProtocolError):
    """Hangup exception: the stream ended in the middle of a frame."""

    def __init__(self, detail: str | None = None) -> None:
        """Initialize a HangupException.

        Args:
          detail: Optional description of where the stream ended
        """
        if detail:
            super().__init__(f"The remote server unexpectedly closed the connection: {detail}")
        else:
            super().__init__("The remote server unexpectedly closed the connection.")
        self.detail = detail


class FormatError(Exception):
    """Malformed pack data."""


class ChecksumMismatch(FormatError):
    """A checksum didn't match the expected contents."""

    def __init__(self, expected: bytes | str, got: bytes | str) -> None:
        """Initialize a ChecksumMismatch exception.

        Args:
          expected: The expected checksum value (raw bytes or hex)
          got: The actual checksum value (raw bytes or hex)
        """
        if isinstance(expected, bytes) and len(expected) == 20:
            expected = binascii.hexlify(expected)
        if isinstance(got, bytes) and len(got) == 20:
            got = binascii.hexlify(got)
        if isinstance(expected, bytes):
            expected = expected.decode("ascii")
        if isinstance(got, bytes):
            got = got.decode("ascii")
        self.expected = expected
        self.got = got
        FormatError.__init__(self, f"Checksum mismatch: Expected {expected}, got {got}")


class ApplyDeltaError(FormatError):
    """Indicates that applying a delta failed."""


class NoSuitableReferenceError(Exception):
    """None of the advertised refs can be used as the clone target."""

    def __init__(self, refs: object = None) -> None:
        """Initialize a NoSuitableReferenceError.

        Args:
          refs: The names that were advertised, for the error message
        """
        self.refs = refs
        Exception.__init__(self, "no suitable reference found")


class WrongObjectException(Exception):
    """Baseclass for all the _ is not a _ exceptions on objects.

    Do not instantiate directly.

    Subclasses should define a type_name attribute that indicates what
    was expected if they were raised.
    """

    type_name: str

    def __init__(self, sha: bytes) -> None:
        """Initialize a WrongObjectException.

        Args:
          sha: The SHA of the object that was not of the expected type.
        """
        self.sha = sha
        Exception.__init__(self, f"{sha.decode('ascii')} is not a {self.type_name}")


class NotCommitError(WrongObjectException):
    """Indicates that the sha requested does not point to a commit."""

    type_name = "commit"


class NotTreeError(WrongObjectException):
    """Indicates that the sha requested does not point to a tree."""

    type_name = "tree"


class NotBlobError(WrongObjectException):
    """Indicates that the sha requested does not point to a blob."""

    type_name = "blob"
