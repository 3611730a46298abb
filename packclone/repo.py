# repo.py -- For dealing with git repositories.
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

"""Repository access.

A repository is a working directory with a ``.git`` control directory
holding loose objects, loose refs and a config file. All paths are derived
from the repository root; the process working directory is never changed.
"""

__all__ = [
    "CONTROLDIR",
    "DEFAULT_BRANCH",
    "DefaultIdentityNotFound",
    "OBJECTDIR",
    "NotARepository",
    "Repo",
    "get_user_identity",
]

import logging
import os
import stat

from .config import Config, ConfigFile, StackedConfig
from .file import GitFile
from .object_store import DiskObjectStore
from .refs import HEADREF, DiskRefsContainer, local_branch_name

logger = logging.getLogger(__name__)

CONTROLDIR = ".git"
OBJECTDIR = "objects"
REFSDIR = "refs"
REFSDIR_TAGS = "tags"
REFSDIR_HEADS = "heads"

BASE_DIRECTORIES = [
    [REFSDIR],
    [REFSDIR, REFSDIR_TAGS],
    [REFSDIR, REFSDIR_HEADS],
]

DEFAULT_BRANCH = b"main"


class NotARepository(Exception):
    """No git repository was found at a path."""

    def __init__(self, path: str) -> None:
        self.path = path
        Exception.__init__(self, f"No git repository was found at {path}")


class DefaultIdentityNotFound(Exception):
    """Default identity not found."""


def _get_default_identity() -> tuple[str, str]:
    import socket

    for name in ("LOGNAME", "USER", "LNAME", "USERNAME"):
        username = os.environ.get(name)
        if username:
            break
    else:
        username = None

    try:
        import pwd
    except ImportError:
        fullname = None
    else:
        try:
            entry = pwd.getpwuid(os.getuid())
        except KeyError:
            fullname = None
        else:
            fullname = entry.pw_gecos.split(",")[0] if entry.pw_gecos else None
            if username is None:
                username = entry.pw_name
    if username is None:
        raise DefaultIdentityNotFound("no username found")
    email = os.environ.get("EMAIL") or f"{username}@{socket.gethostname()}"
    return (fullname or username, email)


def get_user_identity(config: Config, kind: str | None = None) -> bytes:
    """Determine the identity to use for new commits.

    ``GIT_<KIND>_NAME`` and ``GIT_<KIND>_EMAIL`` take precedence when kind
    is given, then the ``user.name`` and ``user.email`` settings, and
    finally the identity of the current user on the host system.

    Args:
      config: Configuration to read from
      kind: Optional kind, usually either "AUTHOR" or "COMMITTER"
    Returns: An identity of the form ``Name <email>``
    """
    user: bytes | None = None
    email: bytes | None = None
    if kind:
        user_env = os.environ.get("GIT_" + kind + "_NAME")
        if user_env is not None:
            user = user_env.encode("utf-8")
        email_env = os.environ.get("GIT_" + kind + "_EMAIL")
        if email_env is not None:
            email = email_env.encode("utf-8")
    if user is None:
        try:
            user = config.get(("user",), "name")
        except KeyError:
            user = None
    if email is None:
        try:
            email = config.get(("user",), "email")
        except KeyError:
            email = None
    if user is None or email is None:
        default_user, default_email = _get_default_identity()
        if user is None:
            user = default_user.encode("utf-8")
        if email is None:
            email = default_email.encode("utf-8")
    if email.startswith(b"<") and email.endswith(b">"):
        email = email[1:-1]
    return user + b" <" + email + b">"


class Repo:
    """A git repository backed by local disk."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        """Open a repository.

        Args:
          root: Path of the working directory containing ``.git``
        Raises:
          NotARepository: if root has no ``.git/objects`` directory
        """
        root = os.fspath(root)
        controldir = os.path.join(root, CONTROLDIR)
        if not os.path.isdir(os.path.join(controldir, OBJECTDIR)):
            raise NotARepository(root)
        self.path = root
        self._controldir = controldir
        self.object_store = DiskObjectStore.from_config(
            os.path.join(controldir, OBJECTDIR), self.get_config()
        )
        self.refs = DiskRefsContainer(controldir)

    def __repr__(self) -> str:
        return f"<Repo at {self.path!r}>"

    @classmethod
    def discover(cls, start: str | os.PathLike[str] = ".") -> "Repo":
        """Iterate parent directories to discover a repository.

        Args:
          start: The directory to start discovery from (defaults to '.')
        """
        path = os.path.abspath(start)
        while True:
            try:
                return cls(path)
            except NotARepository:
                new_path, _tail = os.path.split(path)
                if new_path == path:  # Root reached
                    break
                path = new_path
        raise NotARepository(os.fspath(start))

    def controldir(self) -> str:
        """Return the path of the control directory."""
        return self._controldir

    def get_config(self) -> ConfigFile:
        """Retrieve the config object.

        Returns: `ConfigFile` object for the ``.git/config`` file.
        """
        path = os.path.join(self._controldir, "config")
        try:
            return ConfigFile.from_path(path)
        except FileNotFoundError:
            ret = ConfigFile()
            ret.path = path
            return ret

    def get_config_stack(self) -> StackedConfig:
        """Return the repository config stacked on the user and system ones."""
        backends = [self.get_config(), *StackedConfig.default_backends()]
        return StackedConfig(backends, writable=backends[0])

    def head(self) -> bytes:
        """Return the SHA1 pointed at by HEAD."""
        return self.refs[HEADREF]

    def _determine_file_mode(self) -> bool:
        """Probe the file-system to determine whether permissions can be trusted.

        Returns: True if permissions can be trusted, False otherwise.
        """
        fname = os.path.join(self._controldir, ".probe-permissions")
        with open(fname, "w") as f:
            f.write("")
        try:
            st1 = os.lstat(fname)
            try:
                os.chmod(fname, st1.st_mode ^ stat.S_IXUSR)
            except PermissionError:
                return False
            st2 = os.lstat(fname)
        finally:
            os.unlink(fname)
        return st1.st_mode != st2.st_mode and (st2.st_mode & stat.S_IXUSR) != 0

    def _init_files(self) -> None:
        """Write the initial config file."""
        cf = ConfigFile()
        cf.set("core", "repositoryformatversion", "0")
        cf.set("core", "filemode", self._determine_file_mode())
        cf.set("core", "bare", False)
        cf.set("core", "logallrefupdates", True)
        cf.write_to_path(os.path.join(self._controldir, "config"))

    @classmethod
    def init(
        cls,
        path: str | os.PathLike[str],
        *,
        mkdir: bool = False,
        default_branch: bytes = DEFAULT_BRANCH,
    ) -> "Repo":
        """Create a new repository.

        Args:
          path: Path in which to create the repository
          mkdir: Whether to create the directory
          default_branch: Branch HEAD initially points at
        Returns: `Repo` instance
        """
        path = os.fspath(path)
        if mkdir:
            os.makedirs(path)
        controldir = os.path.join(path, CONTROLDIR)
        os.mkdir(controldir)
        for d in BASE_DIRECTORIES:
            os.mkdir(os.path.join(controldir, *d))
        DiskObjectStore.init(os.path.join(controldir, OBJECTDIR))
        with GitFile(os.path.join(controldir, "HEAD"), "wb") as f:
            f.write(b"ref: " + local_branch_name(default_branch) + b"\n")
        ret = cls(path)
        ret._init_files()
        logger.debug("initialized empty repository in %s", controldir)
        return ret
