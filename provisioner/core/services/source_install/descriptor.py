"""
Build descriptor stamping.

The module tree ships a descriptor template (``dkms.conf.in``). The
installed descriptor is a copy with exactly one line rewritten: the
version field. Every other line, including comments and ordering, is
kept byte for byte.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from provisioner.core.hosts.base import HostConnection


def replace_field_line(text: str, field: str, value: str) -> str:
    """Set ``FIELD="value"`` in shell-style ``text``.

    The last line matching ``^\\s*FIELD=`` is replaced; when no line
    matches, the assignment is appended. Line endings are preserved.
    """
    pattern = re.compile(rf"^\s*{re.escape(field)}=")
    new_line = f'{field}="{value}"'
    lines = text.splitlines(keepends=True)

    for index in range(len(lines) - 1, -1, -1):
        if pattern.match(lines[index]):
            body = lines[index].rstrip("\r\n")
            ending = lines[index][len(body):]
            lines[index] = new_line + ending
            return "".join(lines)

    if lines and not lines[-1].endswith("\n"):
        lines[-1] += "\n"
    lines.append(new_line + "\n")
    return "".join(lines)


def stamp_descriptor(
    host: HostConnection,
    tree: str,
    *,
    template: str,
    descriptor: str,
    field: str,
    version: str,
    sudo: bool = True,
) -> str:
    """Copy ``template`` to ``descriptor`` inside ``tree`` and stamp ``version``.

    Returns:
        Path of the stamped descriptor on the host.
    """
    source = f"{tree.rstrip('/')}/{template}"
    target = f"{tree.rstrip('/')}/{descriptor}"
    host.copy_file(source, target, sudo=sudo)
    content = host.read_text(target)
    host.write_text(target, replace_field_line(content, field, version), sudo=sudo)
    return target
