# test_clone.py -- Tests for cloning repositories
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

"""Tests for cloning over smart HTTP, against canned server responses."""

import os
import stat
import sys

from packclone.clone import clone, get_default_target
from packclone.config import ConfigFile
from packclone.errors import (
    ChecksumMismatch,
    NoSuitableReferenceError,
    NotGitRepository,
)
from packclone.objects import ObjectType
from packclone.protocol import pkt_line
from packclone.repo import Repo

from . import TestCase, skipIf
from .utils import (
    OFS_DELTA,
    PoolManagerMock,
    build_pack,
    create_delta,
    make_commit,
    make_sha,
    make_tag,
    make_tree,
    side_band,
)

BASE_URL = "https://example.com/repo.git"
INFO_REFS_URL = BASE_URL + "/info/refs?service=git-upload-pack"
UPLOAD_PACK_URL = BASE_URL + "/git-upload-pack"

README = b"hello\n"
README2 = b"hello\nworld\n"
SCRIPT = b"#!/bin/sh\necho hello\n"


class CloneTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        blob1 = make_sha(ObjectType.BLOB, README)
        blob2 = make_sha(ObjectType.BLOB, README2)
        script = make_sha(ObjectType.BLOB, SCRIPT)
        tree1_body = make_tree([(0o100644, b"README", blob1)])
        tree2_body = make_tree(
            [(0o100644, b"README", blob2), (0o100755, b"run.sh", script)]
        )
        tree1 = make_sha(ObjectType.TREE, tree1_body)
        tree2 = make_sha(ObjectType.TREE, tree2_body)
        commit1_body = make_commit(tree1, message=b"Initial commit\n")
        self.commit1 = make_sha(ObjectType.COMMIT, commit1_body)
        commit2_body = make_commit(tree2, [self.commit1], b"Add script\n")
        self.commit2 = make_sha(ObjectType.COMMIT, commit2_body)
        tag_body = make_tag(self.commit1, b"commit", b"v1.0")
        self.tag = make_sha(ObjectType.TAG, tag_body)

        self.pack = build_pack(
            [
                (ObjectType.COMMIT, commit2_body),
                (ObjectType.COMMIT, commit1_body),
                (ObjectType.TREE, tree2_body),
                (ObjectType.TREE, tree1_body),
                (ObjectType.BLOB, README),
                (OFS_DELTA, create_delta(README, README2), 4),
                (ObjectType.BLOB, SCRIPT),
                (ObjectType.TAG, tag_body),
            ]
        )
        self.advertisement = (
            pkt_line(b"# service=git-upload-pack\n")
            + pkt_line(None)
            + pkt_line(
                self.commit2
                + b" HEAD\0multi_ack side-band-64k symref=HEAD:refs/heads/main\n"
            )
            + pkt_line(self.commit2 + b" refs/heads/main\n")
            + pkt_line(self.commit1 + b" refs/heads/stable\n")
            + pkt_line(self.tag + b" refs/tags/v1.0\n")
            + pkt_line(self.commit1 + b" refs/tags/v1.0^{}\n")
            + pkt_line(None)
        )
        self.target = os.path.join(self.mkdtemp(), "repo")
        self.progress: list[bytes] = []

    def pool_manager(self, pack: bytes | None = None) -> PoolManagerMock:
        if pack is None:
            pack = self.pack
        upload_pack_result = (
            pkt_line(b"NAK\n")
            + side_band(2, b"Enumerating objects: 8, done.\n")
            + side_band(1, pack)
            + pkt_line(None)
        )
        return PoolManagerMock(
            {
                ("GET", INFO_REFS_URL): (
                    200,
                    {"Content-Type": "application/x-git-upload-pack-advertisement"},
                    self.advertisement,
                ),
                ("POST", UPLOAD_PACK_URL): (
                    200,
                    {"Content-Type": "application/x-git-upload-pack-result"},
                    upload_pack_result,
                ),
            }
        )

    def clone(self, pool_manager: PoolManagerMock | None = None, **kwargs):
        if pool_manager is None:
            pool_manager = self.pool_manager()
        return clone(
            BASE_URL,
            self.target,
            progress=self.progress.append,
            pool_manager=pool_manager,
            **kwargs,
        )

    def read(self, *path: str) -> bytes:
        with open(os.path.join(self.target, *path), "rb") as f:
            return f.read()

    def test_clone(self) -> None:
        pool_manager = self.pool_manager()
        repo = self.clone(pool_manager)
        self.assertEqual(self.target, repo.path)
        self.assertEqual(
            ["GET", "POST"], [method for (method, _, _, _) in pool_manager.requests]
        )
        self.assertEqual([b"Enumerating objects: 8, done.\n"], self.progress)

        self.assertEqual(README2, self.read("README"))
        self.assertEqual(SCRIPT, self.read("run.sh"))
        self.assertEqual(
            sorted([".git", "README", "run.sh"]), sorted(os.listdir(self.target))
        )

        self.assertEqual(self.commit2, repo.head())
        self.assertEqual(b"ref: refs/heads/main", repo.refs.read_ref(b"HEAD"))
        self.assertEqual(self.commit2, repo.refs[b"refs/heads/main"])
        self.assertEqual(self.commit2, repo.refs[b"refs/remotes/origin/main"])
        self.assertEqual(self.commit1, repo.refs[b"refs/remotes/origin/stable"])
        self.assertEqual(
            b"ref: refs/remotes/origin/main",
            repo.refs.read_ref(b"refs/remotes/origin/HEAD"),
        )
        self.assertEqual(self.tag, repo.refs[b"refs/tags/v1.0"])
        self.assertNotIn(b"refs/heads/stable", repo.refs)
        self.assertNotIn(b"refs/tags/v1.0^{}", repo.refs)

    def test_clone_objects(self) -> None:
        repo = self.clone()
        self.assertEqual(8, len(list(repo.object_store)))
        type_num, data = repo.object_store.get_raw(make_sha(ObjectType.BLOB, README2))
        self.assertEqual(ObjectType.BLOB, type_num)
        self.assertEqual(README2, data)

    def test_clone_config(self) -> None:
        self.clone()
        config = ConfigFile.from_path(os.path.join(self.target, ".git", "config"))
        self.assertEqual(BASE_URL.encode(), config.get((b"remote", b"origin"), b"url"))
        self.assertEqual(
            b"+refs/heads/*:refs/remotes/origin/*",
            config.get((b"remote", b"origin"), b"fetch"),
        )
        self.assertEqual(b"origin", config.get((b"branch", b"main"), b"remote"))
        self.assertEqual(b"refs/heads/main", config.get((b"branch", b"main"), b"merge"))

    @skipIf(sys.platform == "win32", "Windows does not support Unix file permissions")
    def test_clone_file_modes(self) -> None:
        self.clone()
        script = os.lstat(os.path.join(self.target, "run.sh"))
        readme = os.lstat(os.path.join(self.target, "README"))
        self.assertEqual(0o755, stat.S_IMODE(script.st_mode))
        self.assertEqual(0o644, stat.S_IMODE(readme.st_mode))

    def test_clone_branch(self) -> None:
        repo = self.clone(branch="stable")
        self.assertEqual(self.commit1, repo.head())
        self.assertEqual(b"ref: refs/heads/stable", repo.refs.read_ref(b"HEAD"))
        self.assertEqual(
            b"ref: refs/remotes/origin/stable",
            repo.refs.read_ref(b"refs/remotes/origin/HEAD"),
        )
        self.assertEqual(README, self.read("README"))
        self.assertFalse(os.path.exists(os.path.join(self.target, "run.sh")))
        config = repo.get_config()
        self.assertEqual(
            b"refs/heads/stable", config.get((b"branch", b"stable"), b"merge")
        )

    def test_clone_tag(self) -> None:
        pool_manager = self.pool_manager()
        repo = self.clone(pool_manager, branch=b"v1.0")
        self.assertEqual(self.commit1, repo.refs.read_ref(b"HEAD"))
        self.assertEqual(self.commit1, repo.head())
        self.assertEqual(self.tag, repo.refs[b"refs/tags/v1.0"])
        self.assertNotIn(b"refs/heads/main", repo.refs)
        self.assertEqual(README, self.read("README"))
        self.assertFalse(repo.get_config().has_section((b"branch", b"v1.0")))
        (_, _, _, body) = pool_manager.requests[1]
        self.assertIn(b"want " + self.tag, body)

    def test_clone_unknown_branch(self) -> None:
        pool_manager = self.pool_manager()
        self.assertRaises(
            NoSuitableReferenceError, self.clone, pool_manager, branch="nope"
        )
        self.assertEqual(1, len(pool_manager.requests))
        self.assertFalse(os.path.exists(self.target))

    def test_clone_no_checkout(self) -> None:
        repo = self.clone(checkout=False)
        self.assertEqual([".git"], os.listdir(self.target))
        self.assertEqual(self.commit2, repo.head())

    def test_clone_into_empty_directory(self) -> None:
        os.mkdir(self.target)
        self.clone()
        self.assertEqual(README2, self.read("README"))

    def test_clone_creates_leading_directories(self) -> None:
        self.target = os.path.join(self.target, "nested", "repo")
        repo = self.clone()
        self.assertEqual(self.target, repo.path)
        self.assertEqual(README2, self.read("README"))

    def test_clone_into_non_empty_directory(self) -> None:
        os.mkdir(self.target)
        with open(os.path.join(self.target, "existing"), "wb") as f:
            f.write(b"data")
        pool_manager = self.pool_manager()
        self.assertRaises(FileExistsError, self.clone, pool_manager)
        self.assertEqual([], pool_manager.requests)
        self.assertEqual(["existing"], os.listdir(self.target))

    def test_clone_onto_file(self) -> None:
        with open(self.target, "wb") as f:
            f.write(b"data")
        self.assertRaises(FileExistsError, self.clone)

    def test_clone_not_found(self) -> None:
        pool_manager = PoolManagerMock(
            {("GET", INFO_REFS_URL): (404, {"Content-Type": "text/plain"}, b"Not found")}
        )
        self.assertRaises(NotGitRepository, self.clone, pool_manager)
        self.assertFalse(os.path.exists(self.target))

    def test_clone_corrupt_pack(self) -> None:
        pack = self.pack[:-1] + bytes([self.pack[-1] ^ 0xFF])
        self.assertRaises(ChecksumMismatch, self.clone, self.pool_manager(pack))
        self.assertEqual([], list(Repo(self.target).object_store))


class DefaultTargetTests(TestCase):
    def test_simple(self) -> None:
        self.assertEqual("repo", get_default_target("https://example.com/repo"))

    def test_strips_git_suffix(self) -> None:
        self.assertEqual("repo", get_default_target("https://example.com/x/repo.git"))

    def test_trailing_slash(self) -> None:
        self.assertEqual("repo", get_default_target("https://example.com/repo.git/"))

    def test_no_name(self) -> None:
        self.assertRaises(ValueError, get_default_target, "https://example.com/.git")
