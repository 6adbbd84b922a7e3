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
Models for classified Dockerfile lines.
"""
from enum import Enum
from typing import Optional
from pydantic import BaseModel

class LineKind(str, Enum):
    """
    What a Dockerfile line is, as far as image pinning is concerned.
    """
    FROM = "from"
    COPY_FROM = "copy-from"
    OTHER = "other"

class DockerfileLine(BaseModel):
    """
    A single Dockerfile line split around its image reference.

    For FROM and COPY --from= lines, ``prefix + image + suffix`` is the
    stripped line. For other lines only ``raw`` is meaningful.
    """
    raw: str
    kind: LineKind = LineKind.OTHER
    prefix: str = ""
    image: str = ""
    suffix: str = ""

    # Stage name declared with 'FROM ... AS <alias>'
    alias: Optional[str] = None

    @property
    def has_image(self) -> bool:
        return self.kind != LineKind.OTHER and bool(self.image)

    def with_image(self, image: str) -> str:
        """
        Rebuilds the stripped line with a different image token.

        :param image: Replacement for the image token.
        :return: The rewritten line, without a newline.
        """
        return f"{self.prefix}{image}{self.suffix}"
