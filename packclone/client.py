# client.py -- Implementation of the client side of the git smart HTTP protocol
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

"""Client side support for the Git smart HTTP protocol.

The fetch is a single stateless exchange:

 * ``GET <url>/info/refs?service=git-upload-pack`` lists the refs and the
   server capabilities.
 * ``POST <url>/git-upload-pack`` with one ``want`` line and ``done`` returns
   the pack, usually multiplexed over side-band channels.

Known capabilities that are used:

 * side-band-64k
 * symref
"""

__all__ = [
    "DiscoveryResult",
    "HttpGitClient",
    "build_upload_pack_request",
    "check_for_proxy_bypass",
    "default_urllib3_manager",
    "default_user_agent_string",
    "read_pack_response",
    "read_pkt_refs",
    "select_head",
]

import ipaddress
import logging
import os
from collections.abc import Callable, Iterable, Iterator
from itertools import chain
from typing import TYPE_CHECKING, NamedTuple
from urllib.parse import urljoin, urlparse

import urllib3
import urllib3.exceptions

import packclone

from .errors import (
    GitProtocolError,
    HangupException,
    NetworkError,
    NoSuitableReferenceError,
    NotGitRepository,
    RemoteError,
)
from .objects import ZERO_SHA, valid_hexsha
from .protocol import (
    CAPABILITIES_REF,
    CAPABILITY_SIDE_BAND_64K,
    CAPABILITY_SYMREF,
    NAK_LINE,
    PACK_MAGIC,
    Protocol,
    demux_side_band,
    extract_capabilities,
    parse_capability,
    pkt_line,
)
from .refs import HEADREF, LOCAL_BRANCH_PREFIX, LOCAL_TAG_PREFIX

if TYPE_CHECKING:
    from urllib3.response import BaseHTTPResponse

    from .config import Config

logger = logging.getLogger(__name__)

UPLOAD_PACK_SERVICE = "git-upload-pack"

# Size of the chunks requested from a response body
_READ_CHUNK_SIZE = 65536


def default_user_agent_string() -> str:
    """Return the default user agent string for packclone."""
    # Start user agent with "git/", because some hosting sites require it.
    return "git/packclone/{}".format(".".join([str(x) for x in packclone.__version__]))


def _http_sections(config: "Config", url: str | None) -> Iterator[tuple[bytes, ...]]:
    """Yield the http config sections applying to url, least specific first.

    ``[http]`` always applies; ``[http "<prefix>"]`` applies when url starts
    with the prefix.
    """
    matching = []
    for section in config.sections():
        if section[0].lower() != b"http":
            continue
        if len(section) == 1:
            matching.append((0, section))
        elif url is not None:
            prefix = section[1].decode("utf-8", "replace")
            if url.startswith(prefix):
                matching.append((len(prefix), section))
    matching.sort(key=lambda x: x[0])
    for _, section in matching:
        yield section


def check_for_proxy_bypass(base_url: str | None) -> bool:
    """Check if the no_proxy environment variable exempts base_url.

    Follows curl: entries are host names (matching subdomains too), IP
    addresses or networks, or ``*`` for everything.
    """
    if not base_url:
        return False
    no_proxy_str = os.environ.get("no_proxy") or os.environ.get("NO_PROXY")
    if not no_proxy_str:
        return False
    hostname = urlparse(base_url).hostname
    if not hostname:
        return False
    try:
        hostname_ip = ipaddress.ip_address(hostname)
    except ValueError:
        hostname_ip = None
    for no_proxy_value in no_proxy_str.split(","):
        no_proxy_value = no_proxy_value.strip().lower().lstrip(".")
        if not no_proxy_value:
            continue
        if no_proxy_value == "*":
            return True
        if hostname_ip is not None:
            try:
                if hostname_ip in ipaddress.ip_network(no_proxy_value, strict=False):
                    return True
            except ValueError:
                pass
        if hostname == no_proxy_value or hostname.endswith("." + no_proxy_value):
            return True
    return False


def default_urllib3_manager(
    config: "Config | None",
    pool_manager_cls: type | None = None,
    proxy_manager_cls: type | None = None,
    base_url: str | None = None,
    timeout: float | None = None,
) -> "urllib3.ProxyManager | urllib3.PoolManager":
    """Return urllib3 connection pool manager.

    Honour detected proxy configurations.

    Args:
      config: `packclone.config.Config` instance with Git configuration.
      pool_manager_cls: Pool manager class to use
      proxy_manager_cls: Proxy manager class to use
      base_url: Base URL for proxy bypass checks and URL-specific settings
      timeout: Timeout for HTTP requests in seconds
    Returns:
      Either pool_manager_cls (defaults to `urllib3.ProxyManager`) instance for
      proxy configurations, proxy_manager_cls
      (defaults to `urllib3.PoolManager`) instance otherwise
    """
    proxy_server: str | None = None
    user_agent: str | None = None
    ca_certs: str | None = None
    ssl_verify = True

    for proxyname in ("https_proxy", "http_proxy", "all_proxy"):
        proxy_server = os.environ.get(proxyname)
        if proxy_server:
            break

    if proxy_server and check_for_proxy_bypass(base_url):
        proxy_server = None

    headers: dict[str, str] = {}
    if config is not None:
        for section in _http_sections(config, base_url):
            if not proxy_server:
                try:
                    proxy_server = config.get(section, b"proxy").decode("utf-8")
                except KeyError:
                    pass
            try:
                user_agent = config.get(section, b"useragent").decode("utf-8")
            except KeyError:
                pass
            ssl_verify_value = config.get_boolean(section, b"sslVerify")
            if ssl_verify_value is not None:
                ssl_verify = ssl_verify_value
            try:
                ca_certs = config.get(section, b"sslCAInfo").decode("utf-8")
            except KeyError:
                pass
            if timeout is None:
                try:
                    timeout = float(config.get(section, b"timeout").decode("utf-8"))
                except KeyError:
                    pass
            try:
                extra_headers = list(config.get_multivar(section, b"extraHeader"))
            except KeyError:
                extra_headers = []
            for extra_header in extra_headers:
                if b": " not in extra_header:
                    logger.warning(
                        "Ignoring invalid http.extraHeader value %r", extra_header
                    )
                    continue
                header_name, header_value = extra_header.split(b": ", 1)
                headers[header_name.decode("utf-8")] = header_value.decode("utf-8")

    if user_agent is None:
        user_agent = default_user_agent_string()
    headers["User-agent"] = user_agent

    kwargs: dict[str, object] = {
        "ca_certs": ca_certs,
        "cert_reqs": "CERT_REQUIRED" if ssl_verify else "CERT_NONE",
    }
    if timeout is not None:
        kwargs["timeout"] = timeout

    manager: urllib3.ProxyManager | urllib3.PoolManager
    if proxy_server:
        if proxy_manager_cls is None:
            proxy_manager_cls = urllib3.ProxyManager
        proxy_server_url = urlparse(proxy_server)
        if proxy_server_url.username is not None:
            proxy_headers = urllib3.make_headers(
                proxy_basic_auth=f"{proxy_server_url.username}:{proxy_server_url.password or ''}"
            )
        else:
            proxy_headers = {}
        logger.debug("using proxy %s", proxy_server_url.hostname)
        manager = proxy_manager_cls(
            proxy_server, proxy_headers=proxy_headers, headers=headers, **kwargs
        )
    else:
        if pool_manager_cls is None:
            pool_manager_cls = urllib3.PoolManager
        manager = pool_manager_cls(headers=headers, **kwargs)

    return manager


class DiscoveryResult(NamedTuple):
    """Refs and capabilities advertised by a server."""

    refs: dict[bytes, bytes]
    capabilities: set[bytes]
    symrefs: dict[bytes, bytes]


def _extract_symrefs(capabilities: Iterable[bytes]) -> dict[bytes, bytes]:
    """Extract symrefs from capabilities.

    Args:
     capabilities: List of capabilities
    Returns: dict mapping symref names to their targets
    """
    symrefs = {}
    for capability in capabilities:
        k, v = parse_capability(capability)
        if k == CAPABILITY_SYMREF and v is not None and b":" in v:
            (src, dst) = v.split(b":", 1)
            symrefs[src] = dst
    return symrefs


def read_pkt_refs(
    pkt_seq: Iterable[bytes],
) -> tuple[dict[bytes, bytes], set[bytes]]:
    """Read a protocol v0/v1 reference advertisement.

    Empty lines and lines starting with ``#``, such as the ``# service=``
    announcement, are skipped.

    Args:
      pkt_seq: Payloads of the ref lines, without flush-pkts
    Returns: Tuple of (refs, capabilities)
    Raises:
      RemoteError: if the server sent an ``ERR`` line
      GitProtocolError: if a ref line is malformed
    """
    server_capabilities = None
    refs: dict[bytes, bytes] = {}
    for pkt in pkt_seq:
        if not pkt.strip() or pkt.startswith(b"#"):
            continue
        if pkt.startswith(b"ERR "):
            raise RemoteError(message=pkt[4:].rstrip(b"\n").decode("utf-8", "replace"))
        try:
            (sha, ref) = pkt.rstrip(b"\n").split(b" ", 1)
        except ValueError as exc:
            raise GitProtocolError(f"Invalid ref line {pkt!r}") from exc
        if not valid_hexsha(sha):
            raise GitProtocolError(f"Invalid object id in ref line {pkt!r}")
        if server_capabilities is None:
            (ref, server_capabilities) = extract_capabilities(ref)
        refs[ref] = sha.lower()

    if len(refs) == 0:
        return {}, set()
    if refs == {CAPABILITIES_REF: ZERO_SHA}:
        refs = {}
    assert server_capabilities is not None
    return refs, set(server_capabilities)


def select_head(refs: dict[bytes, bytes], branch: bytes | str | None = None) -> bytes:
    """Pick the object to clone from the advertised refs.

    Args:
      refs: Advertised refs
      branch: Optional branch (or tag) name requested by the user
    Returns: The id to ask the server for
    Raises:
      NoSuitableReferenceError: if none of the candidate refs is advertised
    """
    if branch is not None:
        if isinstance(branch, str):
            branch = branch.encode("utf-8")
        candidates = [LOCAL_BRANCH_PREFIX + branch, LOCAL_TAG_PREFIX + branch]
    else:
        candidates = [HEADREF, LOCAL_BRANCH_PREFIX + b"main", LOCAL_BRANCH_PREFIX + b"master"]
    for name in candidates:
        try:
            return refs[name]
        except KeyError:
            continue
    raise NoSuitableReferenceError(sorted(refs))


def build_upload_pack_request(want: bytes) -> bytes:
    """Build the body of an upload-pack request for a single object.

    No ``have`` lines are sent, so the server replies with a complete pack.
    """
    return (
        pkt_line(b"want " + want + b" " + CAPABILITY_SIDE_BAND_64K + b"\n")
        + pkt_line(None)
        + pkt_line(b"done\n")
    )


def read_pack_response(
    proto: Protocol, progress: Callable[[bytes], None] | None = None
) -> bytes:
    """Extract the pack from an upload-pack response.

    Leading NAK and ACK lines are skipped. If the body then starts with the
    pack magic, the rest of it is the raw pack; otherwise it is side-band
    multiplexed.

    Args:
      proto: Protocol wrapping the response body
      progress: Optional callback for progress messages
    Returns: Pack contents
    """
    while True:
        if proto.peek(4) == PACK_MAGIC:
            logger.debug("server sent a raw pack")
            return proto.read_remaining()
        if proto.eof():
            raise HangupException("no pack data in upload-pack response")
        pkt = proto.read_pkt_line()
        if pkt is None:
            continue
        if pkt == NAK_LINE or pkt.startswith(b"ACK "):
            continue
        if pkt.startswith(b"ERR "):
            raise RemoteError(message=pkt[4:].rstrip(b"\n").decode("utf-8", "replace"))
        return demux_side_band(chain([pkt], proto), progress)


def _wrap_urllib3_exceptions(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Turn transport failures while reading a body into NetworkError."""
    try:
        yield from chunks
    except urllib3.exceptions.HTTPError as error:
        raise NetworkError(str(error)) from error


class HttpGitClient:
    """Git client that uses urllib3 for smart HTTP(S) connections."""

    def __init__(
        self,
        base_url: str,
        pool_manager: "urllib3.PoolManager | None" = None,
        config: "Config | None" = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize HttpGitClient.

        Args:
          base_url: URL of the repository (http or https)
          pool_manager: Optional urllib3 pool manager to use
          config: Optional configuration for proxy, TLS and header settings
          timeout: Optional timeout for HTTP requests in seconds
        Raises:
          ValueError: if base_url is not an http or https URL
        """
        parsed = urlparse(base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"not an http(s) URL: {base_url}")
        self._base_url = base_url.rstrip("/") + "/"
        self._timeout = timeout
        if pool_manager is None:
            self.pool_manager = default_urllib3_manager(
                config, base_url=base_url, timeout=timeout
            )
        else:
            self.pool_manager = pool_manager
        self.config = config

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._base_url!r})"

    def get_url(self) -> str:
        """Return the repository URL, without trailing slash."""
        return self._base_url.rstrip("/")

    def _http_request(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        data: bytes | None = None,
    ) -> "BaseHTTPResponse":
        """Perform HTTP request.

        Args:
          url: Request URL.
          headers: Optional custom headers to override defaults.
          data: Request data; a POST is sent when given, a GET otherwise.
        Returns: urllib3 response whose body has not been read yet
        Raises:
          NetworkError: if the server could not be reached
          NotGitRepository: on a 404 response
          RemoteError: on any other non-200 response
        """
        req_headers = dict(self.pool_manager.headers)
        if headers is not None:
            req_headers.update(headers)
        req_headers["Pragma"] = "no-cache"

        request_kwargs: dict[str, object] = {
            "headers": req_headers,
            "preload_content": False,
        }
        if self._timeout is not None:
            request_kwargs["timeout"] = self._timeout
        method = "GET" if data is None else "POST"
        if data is not None:
            request_kwargs["body"] = data
        logger.debug("%s %s", method, url)
        try:
            resp = self.pool_manager.request(method, url, **request_kwargs)
        except urllib3.exceptions.HTTPError as e:
            raise NetworkError(str(e)) from e

        if resp.status != 200:
            resp.release_conn()
            if resp.status == 404:
                raise NotGitRepository(self.get_url())
            raise RemoteError(status=resp.status)
        return resp

    def _read_body(self, resp: "BaseHTTPResponse") -> Protocol:
        return Protocol(_wrap_urllib3_exceptions(resp.stream(_READ_CHUNK_SIZE)))

    def _smart_request(self, service: str, data: bytes) -> "BaseHTTPResponse":
        """Send a 'smart' HTTP request.

        This is a simple wrapper around _http_request that sets
        a couple of extra headers and checks the response content type.
        """
        url = urljoin(self._base_url, service)
        result_content_type = f"application/x-{service}-result"
        headers = {
            "Content-Type": f"application/x-{service}-request",
            "Accept": result_content_type,
            "Content-Length": str(len(data)),
        }
        resp = self._http_request(url, headers, data)
        content_type = resp.headers.get("Content-Type")
        if not content_type or content_type.split(";")[0].strip() != result_content_type:
            resp.release_conn()
            raise GitProtocolError(f"Invalid content-type from server: {content_type}")
        return resp

    def discover_references(self) -> DiscoveryResult:
        """Retrieve the refs advertised by the server.

        Returns: DiscoveryResult with refs, capabilities and symrefs
        """
        tail = f"info/refs?service={UPLOAD_PACK_SERVICE}"
        url = urljoin(self._base_url, tail)
        resp = self._http_request(url, {"Accept": "*/*"})
        try:
            resp_url = resp.geturl()
            if resp_url and resp_url != url:
                # Something changed (redirect!), so let's update the base URL
                if not resp_url.endswith(tail):
                    raise GitProtocolError(
                        f"Redirected from URL {url} to URL {resp_url} without {tail}"
                    )
                self._base_url = resp_url[: -len(tail)]
                logger.debug("redirected to %s", self._base_url)
            content_type = resp.headers.get("Content-Type")
            if content_type is None or not content_type.startswith("application/x-git-"):
                raise GitProtocolError(
                    f"{self.get_url()} does not speak the smart HTTP protocol "
                    f"(content-type {content_type})"
                )
            proto = self._read_body(resp)
            lines = []
            for pkt in proto:
                if pkt is not None:
                    lines.append(pkt)
            refs, capabilities = read_pkt_refs(lines)
        finally:
            resp.release_conn()
        symrefs = _extract_symrefs(capabilities)
        logger.debug(
            "discovered %d refs from %s (capabilities: %s)",
            len(refs),
            self.get_url(),
            b" ".join(sorted(capabilities)).decode("ascii", "replace"),
        )
        return DiscoveryResult(refs, capabilities, symrefs)

    def get_refs(self) -> dict[bytes, bytes]:
        """Retrieve the current refs from the server."""
        return self.discover_references().refs

    def fetch_pack(
        self, want: bytes, progress: Callable[[bytes], None] | None = None
    ) -> bytes:
        """Retrieve a pack containing want and everything it references.

        Args:
          want: hex SHA of the object to fetch
          progress: Optional callback for progress messages from the server
        Returns: Pack contents
        """
        if not valid_hexsha(want):
            raise ValueError(f"invalid object id {want!r}")
        resp = self._smart_request(UPLOAD_PACK_SERVICE, build_upload_pack_request(want))
        try:
            data = read_pack_response(self._read_body(resp), progress)
        finally:
            resp.release_conn()
        logger.debug("received %d bytes of pack data", len(data))
        return data
