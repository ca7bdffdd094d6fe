"""
Command Line Interface for D2I.
"""
import click
import yaml

from ..BUILDERS.image_builder import ImageBuilder
from ..errors import D2IError
from ..MODELS.build_options import DEFAULT_BASE_IMAGE, DEFAULT_TARGET_DIR, BuildOptions
from ..MODELS.container_spec import ImageKind
from ..UTILS.logging import configure_logging

# Command line parameter name -> BuildOptions field
OPTION_FIELDS = {
    "main": "main",
    "image_name": "image_name",
    "image_type": "image_type",
    "base_image": "base_image",
    "creation_time": "creation_time",
    "additional_tag": "additional_tags",
    "label": "labels",
    "user": "user",
    "from_registry_username": "from_registry_username",
    "from_registry_password": "from_registry_password",
    "to_registry_username": "to_registry_username",
    "to_registry_password": "to_registry_password",
    "target_dir": "target_dir",
    "cache_dir": "cache_dir",
    "quiet": "quiet",
    "verbose": "verbose",
}


def load_options_file(ctx, param, value):
    """
    Reads a YAML file of option defaults. Keys are long option names;
    command line values take precedence.
    """
    if not value:
        return value

    try:
        with open(value, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise click.BadParameter(f"Cannot read {value}: {e}", ctx=ctx, param=param)

    if not isinstance(data, dict):
        raise click.BadParameter(f"{value} must contain a mapping of options", ctx=ctx, param=param)

    defaults = {}
    for key, item in data.items():
        name = str(key).replace('-', '_')
        if name not in OPTION_FIELDS:
            raise click.BadParameter(f"Unknown option '{key}' in {value}", ctx=ctx, param=param)
        defaults[name] = item

    ctx.default_map = {**(ctx.default_map or {}), **defaults}
    return value


@click.command()
@click.option('--options-file', '-f', type=click.Path(dir_okay=False), is_eager=True, expose_value=False,
              callback=load_options_file, help='YAML file with default values for these options')
@click.option('--main', '-m', metavar='SYMBOL', help='Main namespace')
@click.option('--image-name', metavar='NAME', help='Name of the image including tag, e.g. demo:latest')
@click.option('--image-type', type=click.Choice([k.value for k in ImageKind]), default=ImageKind.DAEMON.value,
              show_default=True, help='Where to publish the image')
@click.option('--base-image', default=DEFAULT_BASE_IMAGE, show_default=True, help='Base image to use')
@click.option('--creation-time', metavar='CREATION-TIME-EPOCH',
              help='Creation time of the image in epoch seconds, e.g. $(git log -1 --pretty=format:%ct). Defaults to 0.')
@click.option('--additional-tag', multiple=True, metavar='TAG',
              help='Additional tag for the image, e.g. latest. Repeat to add multiple tags')
@click.option('--label', multiple=True, metavar='LABEL=VALUE',
              help='Label for the image, e.g. GIT_COMMIT=${CI_COMMIT_SHORT_SHA}. Repeat to add multiple labels')
@click.option('--user', help='User and group to run the container as: user, uid, user:group, uid:gid, uid:group, user:gid')
@click.option('--from-registry-username', metavar='USER', help='Username for pulling the base image, e.g. gitlab-ci-token')
@click.option('--from-registry-password', metavar='PASSWORD', help='Password for pulling the base image, e.g. ${CI_JOB_TOKEN}')
@click.option('--to-registry-username', metavar='USER', help='Username for pushing to the registry, e.g. gitlab-ci-token')
@click.option('--to-registry-password', metavar='PASSWORD', help='Password for pushing to the registry, e.g. ${CI_JOB_TOKEN}')
@click.option('--target-dir', default=DEFAULT_TARGET_DIR, show_default=True,
              help='Directory holding the jars, lib and classes artifact directories')
@click.option('--cache-dir', help='Cache directory for base image layers [default: ~/.d2i/cache]')
@click.option('--quiet', '-q', is_flag=True, help="Don't print a start of build message")
@click.option('--verbose', '-v', is_flag=True, help='Print status of image building')
@click.pass_context
def cli(ctx, **params):
    """
    D2I - build a container image from compiled JVM artifacts.

    Expects the jars, lib and classes directories under the target directory
    and layers them, in that order, on top of the base image.
    """
    ctx.ensure_object(dict)
    fields = {OPTION_FIELDS[name]: value for name, value in params.items()}
    fields['additional_tags'] = list(fields['additional_tags'])
    fields['labels'] = list(fields['labels'])
    options = BuildOptions(**fields)

    configure_logging(verbose=options.verbose, quiet=options.quiet)

    builder = ctx.obj.get('builder')
    if builder is None:
        from ..ENGINE.oci_engine import OciBuildEngine
        builder = ImageBuilder(engine=OciBuildEngine(cache_dir=options.cache_dir))

    if not options.quiet and options.image_name:
        click.echo(f"Building {options.image_name} on {options.base_image}")

    try:
        result = builder.build(options)
    except D2IError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    click.echo(ImageBuilder.report(options, result))


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
