# config.py - Reading and writing Git config files
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

"""Reading and writing Git configuration files.

Section and variable names are case-insensitive; subsection names are not.
Values are bytes. Includes are not followed.
"""

__all__ = [
    "Config",
    "ConfigDict",
    "ConfigFile",
    "StackedConfig",
    "get_xdg_config_home_path",
]

import logging
import os
from collections.abc import Iterator
from typing import IO

from .file import GitFile, _GitFile

logger = logging.getLogger(__name__)

Name = bytes
NameLike = bytes | str
Section = tuple[bytes, ...]
SectionLike = bytes | str | tuple[bytes | str, ...]
Value = bytes
ValueLike = bytes | str


def _lower_section(section: Section) -> Section:
    """Lowercase the section name, preserving subsection case."""
    return (section[0].lower(), *section[1:])


class _Values:
    """Ordered (name, value) pairs of one section, looked up case-insensitively.

    A name can occur more than once (a multivar); plain lookups return the
    last value.
    """

    def __init__(self) -> None:
        self._items: list[tuple[Name, Value]] = []

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._items!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _Values) and self._items == other._items

    def __len__(self) -> int:
        return len({name.lower() for name, _ in self._items})

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, bytes):
            return False
        return any(n.lower() == name.lower() for n, _ in self._items)

    def __getitem__(self, name: Name) -> Value:
        for key, value in reversed(self._items):
            if key.lower() == name.lower():
                return value
        raise KeyError(name)

    def get_all(self, name: Name) -> Iterator[Value]:
        """Yield every value of name, in file order."""
        lowered = name.lower()
        for key, value in self._items:
            if key.lower() == lowered:
                yield value

    def add(self, name: Name, value: Value) -> None:
        """Append a value, keeping any existing ones."""
        self._items.append((name, value))

    def set(self, name: Name, value: Value) -> None:
        """Replace all values of name with a single one."""
        lowered = name.lower()
        self._items = [(k, v) for (k, v) in self._items if k.lower() != lowered]
        self._items.append((name, value))

    def remove(self, name: Name) -> None:
        lowered = name.lower()
        remaining = [(k, v) for (k, v) in self._items if k.lower() != lowered]
        if len(remaining) == len(self._items):
            raise KeyError(name)
        self._items = remaining

    def items(self) -> Iterator[tuple[Name, Value]]:
        return iter(self._items)


class Config:
    """A Git configuration."""

    def get(self, section: SectionLike, name: NameLike) -> Value:
        """Retrieve the contents of a configuration setting.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
        Returns:
          Contents of the setting
        Raises:
          KeyError: if the value is not set
        """
        raise NotImplementedError(self.get)

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        """Retrieve the contents of a multivar configuration setting.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
        Returns:
          Contents of the setting as iterable
        Raises:
          KeyError: if the value is not set
        """
        raise NotImplementedError(self.get_multivar)

    def get_boolean(
        self, section: SectionLike, name: NameLike, default: bool | None = None
    ) -> bool | None:
        """Retrieve a configuration setting as boolean.

        Args:
          section: Tuple with section name and optional subsection name
          name: Name of the setting
          default: Default value if setting is not found
        Returns:
          Contents of the setting
        Raises:
          ValueError: if the value is not a boolean
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        lowered = value.lower()
        if lowered in (b"true", b"yes", b"on", b"1"):
            return True
        elif lowered in (b"false", b"no", b"off", b"0", b""):
            return False
        raise ValueError(f"not a valid boolean string: {value!r}")

    def set(
        self, section: SectionLike, name: NameLike, value: ValueLike | bool
    ) -> None:
        """Set a configuration value.

        Args:
          section: Tuple with section name and optional subsection name
          name: Name of the configuration value
          value: value of the setting
        """
        raise NotImplementedError(self.set)

    def sections(self) -> Iterator[Section]:
        """Iterate over the sections.

        Returns: Iterator over section tuples
        """
        raise NotImplementedError(self.sections)

    def has_section(self, name: Section) -> bool:
        """Check if a specified section exists."""
        return _lower_section(name) in (_lower_section(s) for s in self.sections())


class ConfigDict(Config):
    """Git configuration stored in a dictionary."""

    def __init__(self, encoding: str = "utf-8") -> None:
        """Create a new, empty ConfigDict."""
        self.encoding = encoding
        # Keyed by section with a lowercased section name; the spelling
        # first seen is kept for writing.
        self._values: dict[Section, _Values] = {}
        self._spelling: dict[Section, Section] = {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._values!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, self.__class__) and other._values == self._values

    def __getitem__(self, key: Section) -> _Values:
        return self._values[_lower_section(key)]

    def __iter__(self) -> Iterator[Section]:
        return self.sections()

    def __len__(self) -> int:
        return len(self._values)

    def _check_section_and_name(
        self, section: SectionLike, name: NameLike
    ) -> tuple[Section, Name]:
        if not isinstance(section, tuple):
            section = (section,)
        checked_section = tuple(
            s if isinstance(s, bytes) else s.encode(self.encoding) for s in section
        )
        if not isinstance(name, bytes):
            name = name.encode(self.encoding)
        return checked_section, name

    def _section(self, section: Section) -> _Values:
        """Return the values of a section, creating it if needed."""
        key = _lower_section(section)
        try:
            return self._values[key]
        except KeyError:
            self._spelling[key] = section
            values = self._values[key] = _Values()
            return values

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        section, name = self._check_section_and_name(section, name)
        values = self._values[_lower_section(section)]
        if name not in values:
            raise KeyError(name)
        return values.get_all(name)

    def get(self, section: SectionLike, name: NameLike) -> Value:
        section, name = self._check_section_and_name(section, name)
        return self._values[_lower_section(section)][name]

    def _encode_value(self, value: ValueLike | bool) -> Value:
        if isinstance(value, bool):
            return b"true" if value else b"false"
        if not isinstance(value, bytes):
            return value.encode(self.encoding)
        return value

    def set(
        self, section: SectionLike, name: NameLike, value: ValueLike | bool
    ) -> None:
        section, name = self._check_section_and_name(section, name)
        self._section(section).set(name, self._encode_value(value))

    def add(
        self, section: SectionLike, name: NameLike, value: ValueLike | bool
    ) -> None:
        """Add a value to a configuration setting, creating a multivar if needed."""
        section, name = self._check_section_and_name(section, name)
        self._section(section).add(name, self._encode_value(value))

    def remove(self, section: SectionLike, name: NameLike) -> None:
        """Remove a configuration setting.

        Raises:
          KeyError: If the section or name doesn't exist
        """
        section, name = self._check_section_and_name(section, name)
        self._values[_lower_section(section)].remove(name)

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        """Iterate over the (name, value) pairs of a section."""
        section, _ = self._check_section_and_name(section, b"")
        values = self._values.get(_lower_section(section))
        if values is None:
            return iter([])
        return values.items()

    def sections(self) -> Iterator[Section]:
        return iter(self._spelling[key] for key in self._values)


_ESCAPE_TABLE = {
    ord(b"\\"): ord(b"\\"),
    ord(b'"'): ord(b'"'),
    ord(b"n"): ord(b"\n"),
    ord(b"t"): ord(b"\t"),
    ord(b"b"): ord(b"\b"),
}
_COMMENT_CHARS = (ord(b"#"), ord(b";"))
_WHITESPACE_CHARS = (ord(b"\t"), ord(b" "))


def _parse_string(value: bytes) -> bytes:
    """Unquote and unescape a value, dropping any trailing comment.

    Runs of whitespace between words are kept; whitespace at either end is
    dropped unless quoted.
    """
    ret = bytearray()
    pending_space = bytearray()
    in_quotes = False
    chars = iter(bytearray(value.strip()))
    for c in chars:
        if c == ord(b'"'):
            in_quotes = not in_quotes
            continue
        if c in _COMMENT_CHARS and not in_quotes:
            break
        if c in _WHITESPACE_CHARS and not in_quotes:
            pending_space.append(c)
            continue
        if c == ord(b"\\"):
            escaped = next(chars, None)
            if escaped is None:
                c = ord(b"\\")
            elif escaped in _ESCAPE_TABLE:
                c = _ESCAPE_TABLE[escaped]
            else:
                raise ValueError(f"invalid escape sequence \\{chr(escaped)}")
        ret.extend(pending_space)
        pending_space.clear()
        ret.append(c)
    if in_quotes:
        raise ValueError("missing end quote")
    return bytes(ret)


def _escape_value(value: bytes) -> bytes:
    """Escape a value."""
    value = value.replace(b"\\", b"\\\\")
    value = value.replace(b"\n", b"\\n")
    value = value.replace(b"\t", b"\\t")
    value = value.replace(b'"', b'\\"')
    return value


def _format_string(value: bytes) -> bytes:
    if (
        value.startswith((b" ", b"\t"))
        or value.endswith((b" ", b"\t"))
        or b"#" in value
        or b";" in value
    ):
        return b'"' + _escape_value(value) + b'"'
    return _escape_value(value)


def _check_variable_name(name: bytes) -> bool:
    if not name or not name[:1].isalpha():
        return False
    return all(c.isalnum() or c == b"-" for c in (name[i : i + 1] for i in range(len(name))))


def _check_section_name(name: bytes) -> bool:
    if not name:
        return False
    return all(
        c.isalnum() or c in (b"-", b".") for c in (name[i : i + 1] for i in range(len(name)))
    )


def _strip_comments(line: bytes) -> bytes:
    string_open = False
    for i, character in enumerate(bytearray(line)):
        # Comment characters outside balanced quotes denote comment start
        if character == ord(b'"'):
            string_open = not string_open
        elif not string_open and character in _COMMENT_CHARS:
            return line[:i]
    return line


def _parse_subsection(text: bytes) -> bytes:
    if len(text) < 2 or text[:1] != b'"' or text[-1:] != b'"':
        raise ValueError(f"Invalid subsection {text!r}")
    ret = bytearray()
    chars = iter(bytearray(text[1:-1]))
    for c in chars:
        if c == ord(b"\\"):
            escaped = next(chars, None)
            if escaped is None:
                raise ValueError(f"Invalid subsection {text!r}")
            c = escaped
        ret.append(c)
    return bytes(ret)


def _parse_section_header_line(line: bytes) -> tuple[Section, bytes]:
    """Parse a ``[section]``, ``[section "sub"]`` or ``[section.sub]`` header.

    Returns: Tuple of (section, rest of the line after the closing bracket)
    """
    in_quotes = False
    escaped = False
    for i, c in enumerate(bytearray(line)):
        if escaped:
            escaped = False
        elif c == ord(b"\\"):
            escaped = True
        elif c == ord(b'"'):
            in_quotes = not in_quotes
        elif c == ord(b"]") and not in_quotes:
            last = i
            break
    else:
        raise ValueError(f"expected trailing ] in {line!r}")
    name, sep, subsection = line[1:last].partition(b" ")
    rest = line[last + 1 :]
    if not _check_section_name(name):
        raise ValueError(f"invalid section name {name!r}")
    if sep:
        return (name, _parse_subsection(subsection.strip())), rest
    if b"." in name:
        name, subsection = name.split(b".", 1)
        return (name, subsection), rest
    return (name,), rest


def _ends_with_continuation(line: bytes) -> bool:
    """Check for an unescaped backslash right before the newline."""
    content = line.rstrip(b"\r\n")
    if content == line:
        return False
    trailing = len(content) - len(content.rstrip(b"\\"))
    return trailing % 2 == 1


class ConfigFile(ConfigDict):
    """A Git configuration file, like .git/config or ~/.gitconfig."""

    def __init__(self, encoding: str = "utf-8") -> None:
        super().__init__(encoding=encoding)
        self.path: str | None = None

    @classmethod
    def from_file(cls, f: IO[bytes]) -> "ConfigFile":
        """Read configuration from a file-like object.

        Raises:
          ValueError: if the file is not valid git config syntax
        """
        ret = cls()
        section: Section | None = None
        pending: bytes | None = None
        for lineno, line in enumerate(f.readlines()):
            if lineno == 0 and line.startswith(b"\xef\xbb\xbf"):
                line = line[3:]
            if pending is not None:
                line = pending + line
                pending = None
            if _ends_with_continuation(line):
                pending = line.rstrip(b"\r\n")[:-1]
                continue
            line = line.strip()
            if line[:1] == b"[":
                section, line = _parse_section_header_line(line)
                ret._section(section)
                line = line.strip()
            if not _strip_comments(line).strip():
                continue
            if section is None:
                raise ValueError(f"setting {line!r} without section")
            name, sep, value = line.partition(b"=")
            if not sep:
                name = _strip_comments(name)
            name = name.strip()
            if not _check_variable_name(name):
                raise ValueError(f"invalid variable name {name!r}")
            if sep:
                ret._section(section).add(name, _parse_string(value))
            else:
                # A bare variable name means true
                ret._section(section).add(name, b"true")
        if pending is not None:
            raise ValueError("unexpected end of file after line continuation")
        return ret

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "ConfigFile":
        """Read configuration from a file on disk."""
        abs_path = os.fspath(path)
        with GitFile(abs_path, "rb") as f:
            ret = cls.from_file(f)
        ret.path = abs_path
        return ret

    def write_to_path(self, path: str | os.PathLike[str] | None = None) -> None:
        """Write configuration to a file on disk."""
        if path is None:
            if self.path is None:
                raise ValueError("No path specified and no default path available")
            path = self.path
        with GitFile(path, "wb") as f:
            self.write_to_file(f)

    def write_to_file(self, f: IO[bytes] | _GitFile) -> None:
        """Write configuration to a file-like object."""
        for section in self.sections():
            if len(section) == 1:
                f.write(b"[" + section[0] + b"]\n")
            else:
                subsection = section[1].replace(b"\\", b"\\\\").replace(b'"', b'\\"')
                f.write(b"[" + section[0] + b' "' + subsection + b'"]\n')
            for key, value in self[section].items():
                f.write(b"\t" + key + b" = " + _format_string(value) + b"\n")


def get_xdg_config_home_path(*path_segments: str) -> str:
    """Get a path in the XDG config home directory."""
    xdg_config_home = os.environ.get(
        "XDG_CONFIG_HOME",
        os.path.expanduser("~/.config/"),
    )
    return os.path.join(xdg_config_home, *path_segments)


class StackedConfig(Config):
    """Configuration which reads from multiple config files."""

    def __init__(
        self, backends: list[ConfigFile], writable: ConfigFile | None = None
    ) -> None:
        """Initialize a StackedConfig.

        Args:
          backends: List of config files to read from (in order of precedence)
          writable: Optional config file to write changes to
        """
        self.backends = backends
        self.writable = writable

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} for {self.backends!r}>"

    @classmethod
    def default(cls) -> "StackedConfig":
        """Create a StackedConfig from the user and system config files."""
        return cls(cls.default_backends())

    @classmethod
    def default_backends(cls) -> list[ConfigFile]:
        """Retrieve the default configuration.

        See git-config(1) for details on the files searched.
        """
        paths = []
        try:
            paths.append(os.environ["GIT_CONFIG_GLOBAL"])
        except KeyError:
            paths.append(os.path.expanduser("~/.gitconfig"))
            paths.append(get_xdg_config_home_path("git", "config"))

        if "GIT_CONFIG_NOSYSTEM" not in os.environ:
            paths.append(os.environ.get("GIT_CONFIG_SYSTEM", "/etc/gitconfig"))

        logger.debug("Loading gitconfig from paths: %s", paths)

        backends = []
        for path in paths:
            try:
                cf = ConfigFile.from_path(path)
            except (FileNotFoundError, NotADirectoryError):
                logger.debug("Gitconfig file not found: %s", path)
                continue
            backends.append(cf)
        return backends

    def get(self, section: SectionLike, name: NameLike) -> Value:
        if not isinstance(section, tuple):
            section = (section,)
        for backend in self.backends:
            try:
                return backend.get(section, name)
            except KeyError:
                pass
        raise KeyError(name)

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        if not isinstance(section, tuple):
            section = (section,)
        for backend in self.backends:
            try:
                yield from backend.get_multivar(section, name)
            except KeyError:
                pass

    def set(
        self, section: SectionLike, name: NameLike, value: ValueLike | bool
    ) -> None:
        if self.writable is None:
            raise NotImplementedError(self.set)
        self.writable.set(section, name, value)

    def sections(self) -> Iterator[Section]:
        seen = set()
        for backend in self.backends:
            for section in backend.sections():
                if _lower_section(section) not in seen:
                    seen.add(_lower_section(section))
                    yield section
