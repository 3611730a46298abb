#
# packclone - Simple command-line interface to packclone
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

"""Simple command-line interface to packclone.

The commands mirror their git counterparts: cloning, listing remote refs,
inspecting the objects of a repository and recording new trees and commits.
"""

__all__ = [
    "Command",
    "commands",
    "main",
]

import argparse
import logging
import os
import signal
import stat
import sys
import time
import types
from collections.abc import Sequence

from .clone import clone, get_default_target
from .client import HttpGitClient
from .config import StackedConfig
from .errors import (
    FormatError,
    GitProtocolError,
    NetworkError,
    NoSuitableReferenceError,
    RemoteError,
    WrongObjectException,
)
from .log_utils import default_logging_config
from .objects import (
    ObjectType,
    obj_sha,
    parse_commit_tree,
    parse_tag_object,
    parse_tree,
    serialize_commit,
    sha_to_hex,
    valid_hexsha,
)
from .repo import DefaultIdentityNotFound, NotARepository, Repo, get_user_identity
from .worktree import write_tree_from_directory

logger = logging.getLogger(__name__)

# Failures reported as a one-line error with exit status 1
_REPORTED_ERRORS = (
    NetworkError,
    RemoteError,
    GitProtocolError,
    FormatError,
    NoSuitableReferenceError,
    WrongObjectException,
    NotARepository,
    DefaultIdentityNotFound,
    OSError,
    ValueError,
)


def signal_int(signal: int, frame: types.FrameType | None) -> None:
    """Handle interrupt signal by exiting.

    Args:
        signal: Signal number
        frame: Current stack frame
    """
    sys.exit(1)


def _write_progress(data: bytes) -> None:
    sys.stderr.write(data.decode("utf-8", "replace"))
    sys.stderr.flush()


def _format_tree_entry(name: bytes, mode: int, sha: bytes) -> str:
    if stat.S_ISDIR(mode):
        kind = "tree"
    elif stat.S_IFMT(mode) == 0o160000:
        kind = "commit"
    else:
        kind = "blob"
    return f"{mode:06o} {kind} {sha.decode('ascii')}\t{os.fsdecode(name)}\n"


def _resolve_object_id(name: str) -> bytes:
    sha = name.encode("ascii")
    if not valid_hexsha(sha):
        raise ValueError(f"not a valid object name: {name}")
    return sha.lower()


class Command:
    """A packclone subcommand."""

    def run(self, args: Sequence[str]) -> int | None:
        """Run the command."""
        raise NotImplementedError(self.run)


class cmd_clone(Command):
    """Clone a repository into a new directory."""

    def run(self, args: Sequence[str]) -> None:
        """Execute the clone command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="packclone clone")
        parser.add_argument(
            "-b",
            "--branch",
            type=str,
            help="Check out branch instead of branch pointed to by remote HEAD",
        )
        parser.add_argument(
            "--no-checkout",
            dest="checkout",
            action="store_false",
            help="Don't check out the working tree",
        )
        parser.add_argument(
            "-q", "--quiet", action="store_true", help="Don't show remote progress"
        )
        parser.add_argument("source", help="Repository to clone from")
        parser.add_argument("target", nargs="?", help="Directory to clone into")
        parsed_args = parser.parse_args(args)

        target = parsed_args.target
        if target is None:
            target = get_default_target(parsed_args.source)
        logger.info("Cloning into '%s'...", target)
        clone(
            parsed_args.source,
            target,
            branch=parsed_args.branch,
            checkout=parsed_args.checkout,
            progress=None if parsed_args.quiet else _write_progress,
        )


class cmd_ls_remote(Command):
    """List references in a remote repository."""

    def run(self, args: Sequence[str]) -> None:
        """Execute the ls-remote command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="packclone ls-remote")
        parser.add_argument(
            "--symref", action="store_true", help="Show symbolic references"
        )
        parser.add_argument("url", help="Remote URL to list references from")
        parsed_args = parser.parse_args(args)
        client = HttpGitClient(parsed_args.url, config=StackedConfig.default())
        result = client.discover_references()

        if parsed_args.symref:
            # Show symrefs first, like git does
            for ref, target in sorted(result.symrefs.items()):
                sys.stdout.write(f"ref: {target.decode()}\t{ref.decode()}\n")

        for ref in sorted(result.refs):
            sys.stdout.write(f"{result.refs[ref].decode()}\t{ref.decode()}\n")


class cmd_cat_file(Command):
    """Show the type, size or contents of a repository object."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the cat-file command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="packclone cat-file")
        mode = parser.add_mutually_exclusive_group(required=True)
        mode.add_argument("-p", dest="mode", action="store_const", const="p")
        mode.add_argument("-t", dest="mode", action="store_const", const="t")
        mode.add_argument("-s", dest="mode", action="store_const", const="s")
        parser.add_argument("object", help="Object id")
        parsed_args = parser.parse_args(args)

        repo = Repo.discover()
        sha = _resolve_object_id(parsed_args.object)
        try:
            type_num, data = repo.object_store.get_raw(sha)
        except KeyError:
            logger.error("fatal: Not a valid object name %s", parsed_args.object)
            return 1
        if parsed_args.mode == "t":
            sys.stdout.write(ObjectType(type_num).type_name.decode("ascii") + "\n")
        elif parsed_args.mode == "s":
            sys.stdout.write(f"{len(data)}\n")
        elif type_num == ObjectType.TREE:
            for entry in parse_tree(data):
                sys.stdout.write(_format_tree_entry(entry.path, entry.mode, entry.sha))
        else:
            sys.stdout.buffer.write(data)
            sys.stdout.flush()
        return None


class cmd_ls_tree(Command):
    """List the contents of a tree object."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the ls-tree command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="packclone ls-tree")
        parser.add_argument(
            "--name-only", action="store_true", help="Only display name."
        )
        parser.add_argument("treeish", help="Tree, commit or tag id to list")
        parsed_args = parser.parse_args(args)

        repo = Repo.discover()
        sha = _resolve_object_id(parsed_args.treeish)
        try:
            type_num, data = repo.object_store.get_raw(sha)
            if type_num == ObjectType.TAG:
                _, sha = parse_tag_object(data)
                type_num, data = repo.object_store.get_raw(sha)
            if type_num == ObjectType.COMMIT:
                sha = parse_commit_tree(data)
                type_num, data = repo.object_store.get_raw(sha)
        except KeyError:
            logger.error("fatal: Not a valid object name %s", parsed_args.treeish)
            return 1
        if type_num != ObjectType.TREE:
            logger.error("fatal: not a tree object")
            return 1
        for entry in parse_tree(data):
            if parsed_args.name_only:
                sys.stdout.write(os.fsdecode(entry.path) + "\n")
            else:
                sys.stdout.write(_format_tree_entry(entry.path, entry.mode, entry.sha))
        return None


class cmd_hash_object(Command):
    """Compute the object id of a file, optionally storing it."""

    def run(self, args: Sequence[str]) -> None:
        """Execute the hash-object command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="packclone hash-object")
        parser.add_argument(
            "-w",
            dest="write",
            action="store_true",
            help="Write the object into the object database",
        )
        parser.add_argument(
            "-t",
            dest="type",
            default="blob",
            choices=["blob", "commit", "tree", "tag"],
            help="Type of object to create",
        )
        parser.add_argument("path", help="File to hash")
        parsed_args = parser.parse_args(args)

        type_num = ObjectType.from_type_name(parsed_args.type.encode("ascii"))
        with open(parsed_args.path, "rb") as f:
            data = f.read()
        if parsed_args.write:
            sha = Repo.discover().object_store.add_object(type_num, data)
        else:
            sha = sha_to_hex(obj_sha(type_num, data))
        sys.stdout.write(sha.decode("ascii") + "\n")


class cmd_write_tree(Command):
    """Create a tree object from the working directory."""

    def run(self, args: Sequence[str]) -> None:
        """Execute the write-tree command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="packclone write-tree")
        parser.parse_args(args)
        repo = Repo.discover()
        tree_id = write_tree_from_directory(repo.object_store, repo.path)
        sys.stdout.write(tree_id.decode("ascii") + "\n")


class cmd_commit_tree(Command):
    """Create a new commit object from a tree."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the commit-tree command.

        Args:
            args: Command line arguments
        """
        parser = argparse.ArgumentParser(prog="packclone commit-tree")
        parser.add_argument(
            "-p",
            dest="parents",
            action="append",
            default=[],
            help="Id of a parent commit",
        )
        parser.add_argument("--message", "-m", required=True, help="Commit message")
        parser.add_argument("tree", help="Tree id to commit")
        parsed_args = parser.parse_args(args)

        repo = Repo.discover()
        tree = _resolve_object_id(parsed_args.tree)
        parents = [_resolve_object_id(parent) for parent in parsed_args.parents]
        for sha, expected in [(tree, ObjectType.TREE)] + [
            (parent, ObjectType.COMMIT) for parent in parents
        ]:
            type_num: int | None
            try:
                type_num, _ = repo.object_store.get_raw(sha)
            except KeyError:
                type_num = None
            if type_num != expected:
                logger.error(
                    "fatal: %s is not a valid '%s' object",
                    sha.decode("ascii"),
                    expected.type_name.decode("ascii"),
                )
                return 1

        config = repo.get_config_stack()
        commit_time = int(time.time())
        data = serialize_commit(
            tree,
            parents,
            get_user_identity(config, "AUTHOR"),
            get_user_identity(config, "COMMITTER"),
            commit_time,
            time.localtime(commit_time).tm_gmtoff,
            parsed_args.message.encode("utf-8"),
        )
        commit_id = repo.object_store.add_object(ObjectType.COMMIT, data)
        sys.stdout.write(commit_id.decode("ascii") + "\n")
        return None


commands = {
    "cat-file": cmd_cat_file,
    "clone": cmd_clone,
    "commit-tree": cmd_commit_tree,
    "hash-object": cmd_hash_object,
    "ls-remote": cmd_ls_remote,
    "ls-tree": cmd_ls_tree,
    "write-tree": cmd_write_tree,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the packclone CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="packclone", description="Clone git repositories over smart HTTP"
    )
    parser.add_argument(
        "command",
        help=f"Command to run. Available: {', '.join(sorted(commands.keys()))}",
    )
    parser.add_argument("args", nargs=argparse.REMAINDER)
    if not argv:
        parser.print_help()
        return 1
    parsed_args = parser.parse_args(argv[:1])

    default_logging_config()

    try:
        cmd_kls = commands[parsed_args.command]
    except KeyError:
        logger.fatal("No such subcommand: %s", parsed_args.command)
        return 1
    try:
        return cmd_kls().run(argv[1:]) or 0
    except _REPORTED_ERRORS as e:
        logger.error("error: %s", e)
        return 1


def _main() -> None:
    signal.signal(signal.SIGINT, signal_int)

    sys.exit(main())


if __name__ == "__main__":
    _main()
