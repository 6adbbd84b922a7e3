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
Rewrites a Dockerfile so every FROM and COPY --from= image is pinned to a digest.
"""
import logging
from typing import Dict, List, NamedTuple, Optional, Set

from ..MODELS.dockerfile_ast import DockerfileLine
from ..PARSERS.dockerfile_parser import DockerfileParser
from ..REGISTRY.digest_resolver import DigestResolver
from ..REGISTRY.image_reference import ImageReference, InvalidReferenceError

logger = logging.getLogger(__name__)

SCRATCH = "scratch"
DIGEST_MARKER = "@sha256:"


class PinnedImage(NamedTuple):
    """A reference that was rewritten, with its 1-based line number."""
    line_number: int
    original: str
    resolved: str


class DigestPinner:
    """
    Pins image references in Dockerfile text using a digest resolver.
    """
    def __init__(self, resolver: DigestResolver, parser: Optional[DockerfileParser] = None):
        """
        Initializes the pinner.

        :param resolver: Resolver used for every pinnable reference.
        :param parser: Line classifier. Defaults to DockerfileParser().
        """
        self.resolver = resolver
        self.parser = parser or DockerfileParser()
        self.pinned: List[PinnedImage] = []

    def pin(self, content: str) -> str:
        """
        Rewrites the content, one line at a time.

        Lines without a pinnable reference are kept byte-for-byte. Rewritten
        lines lose their surrounding whitespace. Every line ends with one newline.

        :param content: Full Dockerfile text.
        :return: The rewritten text.
        :raises ResolutionError: If the resolver fails for any reference; no
            partial output is produced.
        """
        pinned: List[PinnedImage] = []
        stages: Set[str] = set()
        resolved: Dict[str, str] = {}
        output = []

        for number, raw in enumerate(self.parser.split_lines(content), start=1):
            line = self.parser.classify(raw)
            new_image = self._pin_line(line, stages, resolved)
            if new_image is None:
                output.append(raw)
            else:
                output.append(line.with_image(new_image))
                pinned.append(PinnedImage(number, line.image, new_image))

            if line.alias:
                stages.add(line.alias.lower())

        self.pinned = pinned
        return "".join(f"{line}\n" for line in output)

    def _pin_line(
        self, line: DockerfileLine, stages: Set[str], resolved: Dict[str, str]
    ) -> Optional[str]:
        """
        Works out the replacement image for a line.

        :param line: Classified line.
        :param stages: Lower-cased stage aliases declared so far.
        :param resolved: Per-document cache of raw token to resolved reference.
        :return: The digest-qualified reference, or None to keep the line as-is.
        """
        if not line.has_image:
            return None

        image = line.image
        if image == SCRATCH or DIGEST_MARKER in image:
            return None
        if image.lower() in stages or image.isdigit():
            logger.debug("Skipping build stage reference %r", image)
            return None

        if image in resolved:
            return resolved[image]

        try:
            ref = ImageReference.parse(image)
        except InvalidReferenceError as e:
            logger.debug("Leaving unparseable image reference as-is: %s", e)
            return None

        result = self.resolver.resolve(ref)
        resolved[image] = result
        return result


def resolve_digests(content: str, resolver: DigestResolver) -> str:
    """
    Pins every image reference in a Dockerfile.

    :param content: Full Dockerfile text.
    :param resolver: Resolver for tagged references.
    :return: The rewritten text.
    """
    return DigestPinner(resolver).pin(content)
