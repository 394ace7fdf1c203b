"""Command-line interface for blobkey."""

import logging
import sys

import click

from blobkey.errors import PatternError
from blobkey.patterns import load_pattern_set

patterns_file_option = click.option(
    "--patterns-file",
    envvar="BLOBKEY_PATTERNS_FILE",
    type=click.Path(dir_okay=False),
    help="File with one URL regex per line (env: BLOBKEY_PATTERNS_FILE, "
         "falls back to BLOBKEY_PATTERNS, then the built-in patterns)"
)
verbose_option = click.option(
    "-v", "--verbose",
    is_flag=True,
    default=False,
    help="Enable verbose logging"
)
debug_option = click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug logging"
)


def _setup_logging(stream, default_level: int, verbose: bool, debug: bool, prefix: str) -> None:
    level = default_level
    if verbose:
        level = logging.INFO
    if debug:
        level = logging.DEBUG
    logging.basicConfig(
        stream=stream,
        level=level,
        format=f"[{prefix}] %(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _load_patterns(patterns_file):
    try:
        return load_pattern_set(patterns_file)
    except PatternError as e:
        raise click.ClickException(str(e))


@click.group()
@click.version_option(package_name="blobkey")
def main():
    """
    blobkey - shared caching of signed CDN blob URLs behind Squid.

    Two helpers configured from the same URL pattern list: a store-id
    program that keys verified content-addressable blobs without their
    signed query string, and an ICAP REQMOD service that hides
    Authorization from Squid's cacheability check for the same URLs.

    \b
    Examples:
        # squid.conf: store_id_program /usr/local/bin/blobkey store-id
        blobkey store-id --probe-timeout 5

        # squid.conf: icap_service blobkey reqmod_precache icap://127.0.0.1:1344/reqmod
        blobkey icap-server -p 1344

        blobkey check-url 'https://cdn01.quay.io/...'
    """


@main.command("store-id")
@patterns_file_option
@click.option(
    "--probe-timeout",
    default=10.0,
    type=float,
    envvar="BLOBKEY_PROBE_TIMEOUT",
    show_default=True,
    help="Timeout (seconds) for the authorization probe (env: BLOBKEY_PROBE_TIMEOUT)"
)
@click.option(
    "--negative-ttl",
    default=0.0,
    type=float,
    envvar="BLOBKEY_NEGATIVE_TTL",
    show_default=True,
    help="Seconds to remember a failed probe for the same signed URL, 0 disables "
         "(env: BLOBKEY_NEGATIVE_TTL)"
)
@click.option(
    "--max-workers",
    default=None,
    type=click.IntRange(min=1),
    envvar="BLOBKEY_MAX_WORKERS",
    help="Maximum concurrent probes (env: BLOBKEY_MAX_WORKERS)"
)
@verbose_option
@debug_option
def store_id(patterns_file, probe_timeout, negative_ttl, max_workers, verbose, debug):
    """Run the Squid store-id helper on stdin/stdout."""
    # stdout is the helper protocol channel
    _setup_logging(sys.stderr, logging.WARNING, verbose, debug, "store-id")
    patterns = _load_patterns(patterns_file)

    from blobkey.store_id import run

    try:
        run(patterns, probe_timeout=probe_timeout, negative_ttl=negative_ttl, max_workers=max_workers)
    except OSError as e:
        logging.getLogger("blobkey.store_id").error("Error reading from stdin: %s", e)
        sys.exit(1)


@main.command("icap-server")
@patterns_file_option
@click.option(
    "-p", "--port",
    default=1344,
    type=int,
    envvar="ICAP_PORT",
    show_default=True,
    help="Port to listen on (env: ICAP_PORT)"
)
@click.option(
    "-b", "--bind",
    default="0.0.0.0",
    envvar="BLOBKEY_ICAP_HOST",
    show_default=True,
    help="Address to bind to (env: BLOBKEY_ICAP_HOST)"
)
@verbose_option
@debug_option
def icap_server(patterns_file, port, bind, verbose, debug):
    """Run the ICAP REQMOD service."""
    _setup_logging(sys.stdout, logging.INFO, verbose, debug, "icap-server")
    patterns = _load_patterns(patterns_file)

    from blobkey.server import serve

    try:
        serve(patterns, host=bind, port=port)
    except OSError as e:
        logging.getLogger("blobkey.server").error("Error starting server: %s", e)
        sys.exit(1)


@main.command("check-url")
@patterns_file_option
@click.argument("urls", nargs=-1, required=True)
def check_url(patterns_file, urls):
    """Report whether URLS are eligible under the configured patterns."""
    patterns = _load_patterns(patterns_file)
    missed = 0
    for url in urls:
        if patterns.matches(url):
            click.echo(f"match     {url}")
        else:
            missed += 1
            click.echo(f"no-match  {url}")
    if missed:
        sys.exit(1)


if __name__ == "__main__":
    main()
