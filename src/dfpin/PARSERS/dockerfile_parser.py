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
Line classifier for Dockerfiles, locating the image reference on FROM and
COPY --from= lines.
"""
import re
from typing import List
from ..MODELS.dockerfile_ast import DockerfileLine, LineKind

# FROM [--flag=value ...] <image><rest>
_FROM = re.compile(r'^(FROM\s+(?:--\S+\s+)*)(\S+)(.*)$')
_COPY_FROM = re.compile(r'^(COPY\b.*?--from=)(\S*)(.*)$')
_ALIAS = re.compile(r'^\s+AS\s+(\S+)', re.IGNORECASE)

class DockerfileParser:
    """
    Classifier for Dockerfile lines.
    """
    def parse(self, dockerfile_path: str) -> List[DockerfileLine]:
        """
        Parses a Dockerfile from a file path.

        Args:
            dockerfile_path (str): Path to the Dockerfile.

        Returns:
            List[DockerfileLine]: One classified entry per line.
        """
        with open(dockerfile_path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> List[DockerfileLine]:
        """
        Parses a Dockerfile from a string content.

        Args:
            content (str): Content of the Dockerfile.

        Returns:
            List[DockerfileLine]: One classified entry per line.
        """
        return [self.classify(line) for line in self.split_lines(content)]

    @staticmethod
    def split_lines(content: str) -> List[str]:
        """
        Splits content on newlines. A final newline does not start a new line,
        and CRLF endings are read as plain newlines.
        """
        lines = [line[:-1] if line.endswith('\r') else line for line in content.split('\n')]
        if lines and lines[-1] == '':
            lines.pop()
        return lines

    def classify(self, line: str) -> DockerfileLine:
        """
        Classifies a single line and splits it around its image reference.

        Args:
            line (str): A line without its trailing newline.

        Returns:
            DockerfileLine: The classified line.
        """
        stripped = line.strip()

        match = _FROM.match(stripped)
        if match:
            prefix, image, suffix = match.groups()
            alias_match = _ALIAS.match(suffix)
            return DockerfileLine(
                raw=line,
                kind=LineKind.FROM,
                prefix=prefix,
                image=image,
                suffix=suffix,
                alias=alias_match.group(1) if alias_match else None
            )

        match = _COPY_FROM.match(stripped)
        if match:
            prefix, image, suffix = match.groups()
            return DockerfileLine(
                raw=line,
                kind=LineKind.COPY_FROM,
                prefix=prefix,
                image=image,
                suffix=suffix
            )

        return DockerfileLine(raw=line)
