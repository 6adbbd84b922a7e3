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
Unit tests for Dockerfile digest pinning.
"""
import pytest
from dfpin.REGISTRY.digest_resolver import StaticResolver
from dfpin.REGISTRY.registry_client import ResolutionError
from dfpin.REWRITERS.digest_pinner import DigestPinner, resolve_digests

ALPINE_3_13 = "sha256:469b6e04ee185740477efa44ed5bdd64a07bbdd6c7e5f5d169e540889597b911"
ALPINE_LATEST = "sha256:8914eb54f968791faf6a8638949e480fef81e697984fba772b3976835194c6d4"
GOLANG_LATEST = "sha256:660f138b4477001d65324a51fa158c1b868651b44e43f0953bf062e9f38b72f3"
NGINX_LATEST = "sha256:0047b729188a15da49380d9506d65959cce6d40291ccfb4e039f5dc7efd33286"

PINNED_ALPINE = f"index.docker.io/library/alpine@{ALPINE_3_13}"


class RecordingResolver(StaticResolver):
    """Static resolver that remembers what it was asked."""

    def __init__(self, digests):
        super().__init__(digests)
        self.calls = []

    def resolve(self, reference):
        self.calls.append(reference.full_name)
        return super().resolve(reference)


@pytest.fixture
def resolver():
    return RecordingResolver({
        "alpine:3.13": ALPINE_3_13,
        "alpine:latest": ALPINE_LATEST,
        "golang:latest": GOLANG_LATEST,
        "nginx:latest": NGINX_LATEST,
    })


@pytest.mark.parametrize("dockerfile,expected", [
    (
        "FROM alpine:3.13",
        f"FROM {PINNED_ALPINE}\n",
    ),
    (
        "   FROM    alpine:3.13   ",
        f"FROM    {PINNED_ALPINE}\n",
    ),
    (
        "FROM alpine:3.13\nCOPY --from=alpine:3.13\n",
        f"FROM {PINNED_ALPINE}\nCOPY --from={PINNED_ALPINE}\n",
    ),
    (
        f"FROM alpine@{ALPINE_3_13}",
        f"FROM alpine@{ALPINE_3_13}\n",
    ),
    (
        "FROM alpine:3.13\nCOPY . .\n\nRUN ls",
        f"FROM {PINNED_ALPINE}\nCOPY . .\n\nRUN ls\n",
    ),
    (
        "FROM alpine:3.13\nFROM scratch\nRUN ls",
        f"FROM {PINNED_ALPINE}\nFROM scratch\nRUN ls\n",
    ),
    (
        "FROM alpine:$(TAG)\nFROM $(IMAGE)\n",
        "FROM alpine:$(TAG)\nFROM $(IMAGE)\n",
    ),
    (
        "COPY --from=nginx:latest /etc/nginx/nginx.conf /nginx.conf",
        f"COPY --from=index.docker.io/library/nginx@{NGINX_LATEST} /etc/nginx/nginx.conf /nginx.conf\n",
    ),
], ids=[
    "happy alpine",
    "happy alpine trim",
    "happy alpine copy",
    "alpine with digest",
    "multi-line",
    "skip scratch",
    "invalid image ref",
    "copy with trailing arguments",
])
def test_pin(resolver, dockerfile, expected):
    assert resolve_digests(dockerfile, resolver) == expected


def test_multi_stage_build_keeps_stage_reference(resolver):
    dockerfile = (
        "FROM golang:latest AS builder\n"
        "RUN CGO_ENABLED=0 GOOS=linux go build -a -installsuffix cgo -o app .\n"
        "\n"
        "FROM alpine:latest\n"
        "WORKDIR /root/\n"
        "COPY --from=builder /go/src/github.com/foo/bar/app .\n"
        "CMD [\"./app\"]"
    )
    expected = (
        f"FROM index.docker.io/library/golang@{GOLANG_LATEST} AS builder\n"
        "RUN CGO_ENABLED=0 GOOS=linux go build -a -installsuffix cgo -o app .\n"
        "\n"
        f"FROM index.docker.io/library/alpine@{ALPINE_LATEST}\n"
        "WORKDIR /root/\n"
        "COPY --from=builder /go/src/github.com/foo/bar/app .\n"
        "CMD [\"./app\"]\n"
    )
    assert resolve_digests(dockerfile, resolver) == expected
    assert "index.docker.io/library/builder:latest" not in resolver.calls


def test_stage_index_and_lowercase_alias_not_resolved(resolver):
    dockerfile = "FROM alpine:3.13 as Build\nCOPY --from=0 /a /a\nCOPY --from=build /b /b\n"
    result = resolve_digests(dockerfile, resolver)
    assert result.splitlines()[1:] == ["COPY --from=0 /a /a", "COPY --from=build /b /b"]
    assert resolver.calls == ["index.docker.io/library/alpine:3.13"]


def test_from_previous_stage_not_resolved(resolver):
    dockerfile = "FROM alpine:3.13 AS base\nFROM base AS final\n"
    result = resolve_digests(dockerfile, resolver)
    assert result == f"FROM {PINNED_ALPINE} AS base\nFROM base AS final\n"


def test_platform_flag_preserved(resolver):
    result = resolve_digests("FROM --platform=linux/amd64 alpine:3.13 AS base", resolver)
    assert result == f"FROM --platform=linux/amd64 {PINNED_ALPINE} AS base\n"


def test_resolver_error_aborts_whole_document(resolver):
    dockerfile = "FROM alpine:3.13\nFROM unknown:1.0\nFROM alpine:latest\n"
    with pytest.raises(ResolutionError):
        resolve_digests(dockerfile, resolver)
    # Stops at the failing line
    assert resolver.calls == [
        "index.docker.io/library/alpine:3.13",
        "index.docker.io/library/unknown:1.0",
    ]


def test_repeated_reference_resolved_once(resolver):
    dockerfile = "FROM alpine:3.13\nCOPY --from=alpine:3.13 /x /x\nFROM alpine:3.13\n"
    result = resolve_digests(dockerfile, resolver)
    assert result.count(PINNED_ALPINE) == 3
    assert resolver.calls == ["index.docker.io/library/alpine:3.13"]


def test_pinned_report(resolver):
    pinner = DigestPinner(resolver)
    pinner.pin("FROM alpine:3.13\nRUN ls\nCOPY --from=nginx:latest /a /b\n")
    assert [(p.line_number, p.original) for p in pinner.pinned] == [
        (1, "alpine:3.13"),
        (3, "nginx:latest"),
    ]
    assert pinner.pinned[1].resolved == f"index.docker.io/library/nginx@{NGINX_LATEST}"


def test_idempotent(resolver):
    once = resolve_digests("FROM alpine:3.13 AS a\nCOPY --from=nginx:latest /a /b\n", resolver)
    assert resolve_digests(once, resolver) == once


def test_unchanged_lines_are_not_trimmed(resolver):
    dockerfile = "  RUN echo hi  \n   FROM scratch  \n\tFROM $(IMAGE)\n"
    assert resolve_digests(dockerfile, resolver) == dockerfile


def test_newline_normalization(resolver):
    assert resolve_digests("", resolver) == ""
    assert resolve_digests("\n", resolver) == "\n"
    assert resolve_digests("RUN a\n\n\nRUN b", resolver) == "RUN a\n\n\nRUN b\n"
    assert resolver.calls == []


def test_comments_and_lowercase_keyword_ignored(resolver):
    dockerfile = "# FROM alpine:3.13\nfrom alpine:3.13\nRUN echo --from=alpine:3.13\n"
    assert resolve_digests(dockerfile, resolver) == dockerfile
    assert resolver.calls == []


def test_empty_copy_from_value(resolver):
    dockerfile = "COPY --from= /a /b\n"
    assert resolve_digests(dockerfile, resolver) == dockerfile


def test_crlf_line_endings_normalized(resolver):
    dockerfile = "FROM alpine:3.13\r\nRUN ls\r\n\r\nCOPY --from=alpine:3.13 /a /a\r\n"
    result = resolve_digests(dockerfile, resolver)
    assert result == f"FROM {PINNED_ALPINE}\nRUN ls\n\nCOPY --from={PINNED_ALPINE} /a /a\n"
    assert "\r" not in result
