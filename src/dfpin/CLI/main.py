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
Command Line Interface for dfpin.
"""
import logging
import sys

import click

from .. import __version__
from ..PARSERS.config_parser import ConfigParser, ConfigError
from ..REGISTRY.digest_resolver import ChainResolver, RegistryResolver, StaticResolver, parse_override
from ..REGISTRY.image_reference import InvalidReferenceError
from ..REGISTRY.registry_client import RegistryClient, ResolutionError
from ..REWRITERS.digest_pinner import DigestPinner

@click.group()
@click.option('--config', '-c', type=click.Path(dir_okay=False), default=None,
              help='YAML config file (defaults to $DFPIN_CONFIG)')
@click.option('--verbose', '-v', is_flag=True, help='Log registry lookups')
@click.pass_context
def cli(ctx, config, verbose):
    """
    dfpin - pin Dockerfile base images to digests.

    Rewrites FROM and COPY --from= image references from name:tag to
    name@sha256:... for reproducible builds.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
        force=True,
    )
    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj['verbose'] = verbose

@cli.command()
@click.argument('dockerfile', type=click.File('r'))
@click.option('--output', '-o', type=click.Path(dir_okay=False), default=None,
              help='Write the pinned Dockerfile here instead of stdout')
@click.option('--in-place', '-i', is_flag=True, help='Overwrite DOCKERFILE')
@click.option('--override', multiple=True, metavar='REF=DIGEST',
              help='Use DIGEST for REF without asking the registry')
@click.pass_context
def resolve(ctx, dockerfile, output, in_place, override):
    """Pin the images in DOCKERFILE ('-' for stdin)."""
    if in_place and output:
        raise click.UsageError("--in-place and --output are mutually exclusive")
    if in_place and dockerfile.name == '<stdin>':
        raise click.UsageError("--in-place needs a file, not stdin")

    try:
        settings = ConfigParser().load(ctx.obj['config'])
        overrides = StaticResolver(settings.overrides)
        for value in override:
            overrides.add(*parse_override(value))
    except (ConfigError, InvalidReferenceError) as e:
        raise click.UsageError(str(e))

    resolver = ChainResolver(overrides, RegistryResolver(RegistryClient(settings)))
    pinner = DigestPinner(resolver)

    content = dockerfile.read()
    try:
        pinned = pinner.pin(content)
    except ResolutionError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    target = dockerfile.name if in_place else output
    if target:
        with open(target, 'w') as f:
            f.write(pinned)
    else:
        click.echo(pinned, nl=False)

    if ctx.obj['verbose']:
        for image in pinner.pinned:
            click.echo(f"line {image.line_number}: {image.original} -> {image.resolved}", err=True)
        click.echo(f"Pinned {len(pinner.pinned)} image reference(s).", err=True)

@cli.command()
def version():
    """Show the dfpin version"""
    click.echo(__version__)

def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})

if __name__ == '__main__':
    main()
