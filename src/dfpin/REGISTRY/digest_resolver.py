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
Digest resolvers: turn a tagged image reference into a digest-qualified one.
"""

import logging
from typing import Dict, Mapping, Optional, Protocol, Tuple

from .image_reference import ImageReference, InvalidReferenceError
from .registry_client import RegistryClient, ResolutionError

logger = logging.getLogger(__name__)


class DigestResolver(Protocol):
    """Anything that can pin an image reference to a digest."""

    def resolve(self, reference: ImageReference) -> str:
        """
        Resolve a reference.

        Args:
            reference: Parsed, unpinned image reference.

        Returns:
            Digest-qualified reference, e.g. 'index.docker.io/library/alpine@sha256:...'

        Raises:
            ResolutionError: If the digest cannot be determined.
        """
        ...


class RegistryResolver:
    """Resolves digests by asking the image's registry."""

    def __init__(self, client: RegistryClient):
        self.client = client

    def resolve(self, reference: ImageReference) -> str:
        digest = self.client.get_digest(reference)
        return reference.with_digest(digest).full_name


class StaticResolver:
    """
    Resolves digests from a fixed table.

    Keys may be written in any form ImageReference accepts ('alpine:3.13',
    'docker.io/library/alpine:3.13'); they are normalized on construction.
    """

    def __init__(self, digests: Optional[Mapping[str, str]] = None):
        self._digests: Dict[str, str] = {}
        for name, digest in (digests or {}).items():
            self.add(name, digest)

    def add(self, name: str, digest: str) -> None:
        """
        Register a pinned digest.

        Args:
            name: Tagged image reference.
            digest: 'sha256:<64 hex>' digest.
        """
        ref = ImageReference.parse(name)
        # Validates the digest format
        ref.with_digest(digest)
        self._digests[ref.full_name] = digest

    def __contains__(self, reference: ImageReference) -> bool:
        return reference.full_name in self._digests

    def __len__(self) -> int:
        return len(self._digests)

    def resolve(self, reference: ImageReference) -> str:
        digest = self._digests.get(reference.full_name)
        if digest is None:
            raise ResolutionError(f"No digest known for {reference.full_name}")
        return reference.with_digest(digest).full_name


class ChainResolver:
    """Tries static overrides first and falls back to another resolver."""

    def __init__(self, overrides: StaticResolver, fallback: DigestResolver):
        self.overrides = overrides
        self.fallback = fallback

    def resolve(self, reference: ImageReference) -> str:
        if reference in self.overrides:
            logger.debug("Using override for %s", reference.full_name)
            return self.overrides.resolve(reference)
        return self.fallback.resolve(reference)


def parse_override(value: str) -> Tuple[str, str]:
    """
    Split a 'REFERENCE=DIGEST' override.

    Raises:
        InvalidReferenceError: If the value has no '=' or an invalid side.
    """
    name, sep, digest = value.partition("=")
    if not sep or not name or not digest:
        raise InvalidReferenceError(f"Override must look like REFERENCE=DIGEST: {value}")
    ImageReference.parse(name).with_digest(digest)
    return name, digest
