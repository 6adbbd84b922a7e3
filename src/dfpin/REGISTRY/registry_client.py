# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Registry client for looking up manifest digests.
Implements the parts of the Docker Registry HTTP API V2 needed to turn a tag
into a digest: manifest HEAD/GET and token authentication.
"""

import base64
import hashlib
import json
import logging
import re
from email.message import Message
from typing import Dict, Optional, Tuple
from urllib.request import urlopen, Request
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .image_reference import ImageReference
from ..MODELS.settings import Settings

logger = logging.getLogger(__name__)

USER_AGENT = "dfpin/0.1.0"

MANIFEST_MEDIA_TYPES = [
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
]

_DIGEST = re.compile(r"sha256:[a-f0-9]{64}")
_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


class ResolutionError(Exception):
    """Raised when the digest of an image cannot be determined."""


class TransientRegistryError(ResolutionError):
    """A failure worth retrying: connection problems, HTTP 429 and 5xx."""


class HeadNotAllowedError(ResolutionError):
    """The registry rejected a HEAD request with 405."""


class RegistryClient:
    """
    Client for looking up image digests in Docker Hub and OCI-compatible registries.
    """

    def __init__(self, settings: Optional[Settings] = None, wait=None):
        """
        Initialize the registry client.

        Args:
            settings: Timeouts, retries and credentials. Defaults to Settings().
            wait: tenacity wait strategy between retries. Defaults to exponential backoff.
        """
        self.settings = settings or Settings()
        self._wait = wait or wait_exponential(multiplier=0.5, max=8)
        self._auth_tokens: Dict[str, str] = {}

    def get_digest(self, ref: ImageReference) -> str:
        """
        Get the manifest digest for an image reference.

        Args:
            ref: Image reference

        Returns:
            Digest as 'sha256:<hex>'

        Raises:
            ResolutionError: If the registry does not return a digest.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.settings.retries),
            wait=self._wait,
            retry=retry_if_exception_type(TransientRegistryError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._fetch_digest, ref)

    def _manifest_url(self, ref: ImageReference) -> str:
        base = ref.registry_url(self.settings.insecure_registries)
        return f"{base}/v2/{ref.repository}/manifests/{ref.identifier}"

    def _fetch_digest(self, ref: ImageReference) -> str:
        """Ask for the manifest headers, falling back to hashing the manifest body."""
        url = self._manifest_url(ref)
        logger.debug("Resolving %s via %s", ref.full_name, url)

        try:
            _, headers = self._make_request(url, ref, method="HEAD")
            digest = headers.get("Docker-Content-Digest")
        except HeadNotAllowedError:
            logger.debug("%s does not allow HEAD on manifests", ref.registry)
            digest = None
        if not digest:
            # Some registries only send the digest header on GET
            content, headers = self._make_request(url, ref, method="GET")
            digest = headers.get("Docker-Content-Digest") or (
                f"sha256:{hashlib.sha256(content).hexdigest()}"
            )

        if not _DIGEST.fullmatch(digest):
            raise ResolutionError(f"Registry returned an invalid digest for {ref.full_name}: {digest}")

        logger.info("Resolved %s to %s", ref.full_name, digest)
        return digest

    def _make_request(
        self, url: str, ref: ImageReference, method: str = "GET", retry_auth: bool = True
    ) -> Tuple[bytes, Message]:
        """Make an authenticated request to the registry."""
        request = Request(url, method=method)
        request.add_header("Accept", ", ".join(MANIFEST_MEDIA_TYPES))
        request.add_header("User-Agent", USER_AGENT)

        token = self._auth_tokens.get(self._token_key(ref))
        if token:
            request.add_header("Authorization", token)

        try:
            with urlopen(request, timeout=self.settings.timeout) as response:
                return response.read(), response.headers
        except HTTPError as e:
            if e.code == 401 and retry_auth:
                token = self._authenticate(ref, e.headers.get("WWW-Authenticate", ""))
                if token:
                    self._auth_tokens[self._token_key(ref)] = token
                    return self._make_request(url, ref, method, retry_auth=False)
            if e.code == 429 or e.code >= 500:
                raise TransientRegistryError(
                    f"Registry error for {ref.full_name}: HTTP {e.code} {e.reason}"
                ) from e
            if e.code == 405 and method == "HEAD":
                raise HeadNotAllowedError(f"HEAD not allowed for {ref.full_name}") from e
            if e.code == 404:
                raise ResolutionError(f"Image not found: {ref.full_name}") from e
            if e.code in (401, 403):
                raise ResolutionError(f"Access denied to {ref.full_name}: HTTP {e.code}") from e
            raise ResolutionError(
                f"Registry error for {ref.full_name}: HTTP {e.code} {e.reason}"
            ) from e
        except URLError as e:
            raise TransientRegistryError(f"Cannot reach registry {ref.registry}: {e.reason}") from e
        except OSError as e:
            raise TransientRegistryError(f"Connection to {ref.registry} failed: {e}") from e

    @staticmethod
    def _token_key(ref: ImageReference) -> str:
        return f"{ref.registry}/{ref.repository}"

    def _basic_auth(self, ref: ImageReference) -> Optional[str]:
        creds = self.settings.credentials_for(ref.registry)
        if not creds:
            return None
        auth = base64.b64encode(f"{creds.username}:{creds.password}".encode()).decode()
        return f"Basic {auth}"

    def _authenticate(self, ref: ImageReference, challenge: str) -> Optional[str]:
        """
        Answer a WWW-Authenticate challenge.

        Args:
            ref: Image reference being resolved
            challenge: Value of the WWW-Authenticate header

        Returns:
            Authorization header value, or None if the challenge cannot be met.
        """
        scheme = challenge.split(" ", 1)[0].lower()
        if scheme == "basic":
            return self._basic_auth(ref)
        if scheme != "bearer":
            logger.warning("Unsupported auth challenge from %s: %r", ref.registry, challenge)
            return None

        params = dict(_CHALLENGE_PARAM.findall(challenge))
        realm = params.get("realm")
        if not realm:
            logger.warning("Bearer challenge from %s has no realm", ref.registry)
            return None

        query = {"scope": params.get("scope") or f"repository:{ref.repository}:pull"}
        if params.get("service"):
            query["service"] = params["service"]

        request = Request(f"{realm}?{urlencode(query)}")
        request.add_header("User-Agent", USER_AGENT)
        basic = self._basic_auth(ref)
        if basic:
            request.add_header("Authorization", basic)

        try:
            with urlopen(request, timeout=self.settings.timeout) as response:
                data = json.loads(response.read().decode())
        except HTTPError as e:
            raise ResolutionError(
                f"Authentication for {ref.full_name} failed: HTTP {e.code} {e.reason}"
            ) from e
        except URLError as e:
            raise TransientRegistryError(f"Cannot reach auth server {realm}: {e.reason}") from e
        except ValueError as e:
            raise ResolutionError(f"Invalid token response from {realm}") from e

        if not isinstance(data, dict):
            raise ResolutionError(f"Invalid token response from {realm}")
        token = data.get("token") or data.get("access_token")
        if not token:
            raise ResolutionError(f"Token response from {realm} has no token")
        return f"Bearer {token}"
