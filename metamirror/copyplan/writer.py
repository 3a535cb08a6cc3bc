from __future__ import annotations
import logging
from pathlib import Path
from typing import List

from metamirror.copyplan.builder import CopyInstruction
from metamirror.core.workflow import Side

log = logging.getLogger(__name__)


def manifest_name(database: str, side: Side, index: int) -> str:
    return f"{database}_{side.value}_{index}_distcp_source.txt"


def script_name(database: str, side: Side) -> str:
    return f"{database}_{side.value}_distcp_script.sh"


def write_copy_plan(output_dir: str, database: str, side: Side, instructions: List[CopyInstruction]) -> List[Path]:
    """Write manifests plus one shell script running every copy instruction.

    The script expects HCFS_BASE_DIR to point at where the manifests were
    uploaded and DISTCP_OPTS to carry any extra tool options.
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []

    lines = [
        "#!/usr/bin/env bash",
        "",
        "# Bulk copy plan for database " + database + " (" + side.value + ")",
        'if [ -z "${HCFS_BASE_DIR}" ]; then',
        '  echo "HCFS_BASE_DIR must be set to the directory holding the manifests" >&2',
        "  exit 1",
        "fi",
        "",
    ]
    for i, instruction in enumerate(instructions, start=1):
        if instruction.manifest:
            manifest = out / manifest_name(database, side, i)
            manifest.write_text("\n".join(instruction.sources) + "\n", encoding="utf-8")
            written.append(manifest)
            lines.append(f"hadoop distcp ${{DISTCP_OPTS}} -f ${{HCFS_BASE_DIR}}/{manifest.name} {instruction.target}")
        else:
            lines.append(f"hadoop distcp ${{DISTCP_OPTS}} {instruction.sources[0]} {instruction.target}")
    lines.append("")

    script = out / script_name(database, side)
    script.write_text("\n".join(lines), encoding="utf-8")
    written.append(script)
    log.info("Wrote %d copy instructions for %s (%s) to %s", len(instructions), database, side.value, out)
    return written
