"""
CLI commands for working with module source trees locally.

Thin wrappers over ``provisioner.core.services.source_install``.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click


@click.group()
def source() -> None:
    """Source trees — verify digests, stamp descriptors."""


@source.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option(
    "--algorithm", "-a",
    type=click.Choice(["md5", "sha1", "sha256", "sha512"]),
    default=None,
    help="Digest algorithm (default: from --expected, else sha1).",
)
@click.option("--expected", "-e", default=None, help="Expected digest, as ALGO:HEX or bare hex.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def verify(path: Path, algorithm: str | None, expected: str | None, as_json: bool) -> None:
    """Compute the tree digest of PATH (and compare it to --expected)."""
    from provisioner.core.errors import PathUnreadable
    from provisioner.core.services.source_install import (
        checksum_matches,
        compute_tree_checksum,
        parse_checksum,
    )

    if expected:
        try:
            expected_algo, _digest = parse_checksum(expected)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--expected") from e
        if algorithm and algorithm != expected_algo:
            raise click.BadParameter(
                f"--algorithm {algorithm} disagrees with --expected ({expected_algo})",
                param_hint="--algorithm",
            )
        algorithm = expected_algo
    algorithm = algorithm or "sha1"

    try:
        digest = compute_tree_checksum(path, algorithm)
    except PathUnreadable as e:
        if as_json:
            click.echo(json.dumps({"path": str(path), "error": str(e)}, indent=2))
        else:
            click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    matched = checksum_matches(digest, expected) if expected else None

    if as_json:
        click.echo(json.dumps(
            {"path": str(path), "algorithm": algorithm, "digest": digest, "matches": matched},
            indent=2,
        ))
    elif matched is None:
        click.echo(f"{algorithm}:{digest}  {path}")
    elif matched:
        click.secho(f"✅ {algorithm}:{digest}  {path}", fg="green")
    else:
        click.secho(f"❌ {algorithm}:{digest}  {path}", fg="red")
        click.echo(f"   expected {expected}")

    if matched is False:
        sys.exit(1)


@source.command()
@click.argument("descriptor", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--version", "version", required=True, help="Version to write.")
@click.option("--field", default="PACKAGE_VERSION", show_default=True, help="Variable to set.")
def stamp(descriptor: Path, version: str, field: str) -> None:
    """Set FIELD="VERSION" in DESCRIPTOR, leaving every other line as is."""
    from provisioner.core.services.source_install import replace_field_line

    original = descriptor.read_text(encoding="utf-8")
    updated = replace_field_line(original, field, version)
    if updated == original:
        click.echo(f"⊘ {descriptor} already has {field}=\"{version}\"")
        return
    descriptor.write_text(updated, encoding="utf-8")
    click.secho(f"✓ {descriptor}: {field}=\"{version}\"", fg="green")
