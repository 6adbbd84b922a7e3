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
Image reference parsing and handling.
Parses image references like 'alpine:3.13' or 'gcr.io/project/image@sha256:...'
and rejects anything that is not a well-formed reference (build-arg
placeholders, upper-case repositories, bad digests).
"""

import re
from typing import Iterable, Optional
from dataclasses import dataclass, replace


_COMPONENT = re.compile(r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*")
_TAG = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}")
_DIGEST = re.compile(r"sha256:[a-f0-9]{64}")
_REGISTRY = re.compile(r"[A-Za-z0-9.-]+(?::[0-9]+)?")


class InvalidReferenceError(ValueError):
    """Raised when a string is not a valid image reference."""


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed image reference.

    Examples:
        - alpine -> index.docker.io/library/alpine:latest
        - alpine:3.13 -> index.docker.io/library/alpine:3.13
        - myuser/myimage:v1 -> index.docker.io/myuser/myimage:v1
        - gcr.io/project/image@sha256:abc... -> gcr.io/project/image@sha256:abc...
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "index.docker.io"
    DEFAULT_TAG = "latest"
    DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", "registry-1.docker.io")

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'alpine:3.13', 'myuser/myimage:v1')

        Returns:
            Parsed ImageReference object.

        Raises:
            InvalidReferenceError: If the string is not a valid reference.
        """
        if not reference:
            raise InvalidReferenceError("Empty image reference")
        original = reference

        # Handle digest format (image@sha256:...)
        digest = None
        if "@" in reference:
            reference, digest = reference.split("@", 1)
            if not _DIGEST.fullmatch(digest):
                raise InvalidReferenceError(f"Invalid digest in reference: {original}")

        # Handle tag format (image:tag)
        tag = None
        last_colon = reference.rfind(":")
        if last_colon != -1:
            after_colon = reference[last_colon + 1 :]
            # A slash after the colon means it was a registry port
            if "/" not in after_colon:
                if not _TAG.fullmatch(after_colon):
                    raise InvalidReferenceError(f"Invalid tag in reference: {original}")
                tag = after_colon
                reference = reference[:last_colon]

        parts = reference.split("/")
        first_part = parts[0]
        if len(parts) > 1 and (
            "." in first_part or ":" in first_part or first_part == "localhost"
        ):
            registry = first_part
            parts = parts[1:]
            if not _REGISTRY.fullmatch(registry):
                raise InvalidReferenceError(f"Invalid registry in reference: {original}")
        else:
            registry = cls.DEFAULT_REGISTRY

        if registry in cls.DOCKER_HUB_ALIASES:
            registry = cls.DEFAULT_REGISTRY

        for part in parts:
            if not _COMPONENT.fullmatch(part):
                raise InvalidReferenceError(f"Invalid repository in reference: {original}")

        repository = "/".join(parts)
        if registry == cls.DEFAULT_REGISTRY and len(parts) == 1:
            repository = f"library/{repository}"

        if len(repository) > 255:
            raise InvalidReferenceError(f"Repository name too long: {original}")

        # Use default tag if none specified and no digest
        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def context(self) -> str:
        """Registry and repository, without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def identifier(self) -> str:
        """The tag or digest used to address the manifest."""
        return self.digest or self.tag or self.DEFAULT_TAG

    @property
    def is_pinned(self) -> bool:
        return self.digest is not None

    @property
    def full_name(self) -> str:
        """Get full image name with registry."""
        if self.digest:
            return f"{self.context}@{self.digest}"
        return f"{self.context}:{self.tag or self.DEFAULT_TAG}"

    @property
    def short_name(self) -> str:
        """Get short image name (without registry if default)."""
        if self.registry != self.DEFAULT_REGISTRY:
            return self.full_name
        repo = self.repository
        # Remove 'library/' prefix for official images
        if repo.startswith("library/"):
            repo = repo[8:]
        if self.digest:
            return f"{repo}@{self.digest}"
        return f"{repo}:{self.tag or self.DEFAULT_TAG}"

    def with_digest(self, digest: str) -> "ImageReference":
        """Return a copy of this reference pinned to ``digest``."""
        if not _DIGEST.fullmatch(digest):
            raise InvalidReferenceError(f"Invalid digest: {digest}")
        return replace(self, tag=None, digest=digest)

    def registry_url(self, insecure_registries: Iterable[str] = ()) -> str:
        """Get the registry URL for API calls."""
        if self.registry == self.DEFAULT_REGISTRY:
            return "https://registry-1.docker.io"
        if self.registry in insecure_registries:
            return f"http://{self.registry}"
        return f"https://{self.registry}"

    def __str__(self) -> str:
        return self.short_name

    def __repr__(self) -> str:
        return f"ImageReference({self.full_name})"
