from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List

from .merge import JoinResult
from .objects import short_id


def summarize_cli(result: JoinResult) -> str:
    title = "Join Summary (dry-run)" if result.dry_run else "Join Summary"
    lines = [title, "=" * len(title)]
    rewritten = {}
    if result.weave:
        rewritten = {tip.source.path: tip.rewritten for tip in result.weave.tips}
    for source in result.sources:
        detail = f"- {source.name}: {source.branch} -> {source.destination}/ ({short_id(source.tip)}"
        if source.path in rewritten:
            detail += f" => {short_id(rewritten[source.path])}"
        lines.append(detail + ")")
    if result.skipped:
        lines.append("")
        lines.append("Skipped")
        lines.append("=======")
        for skipped in result.skipped:
            lines.append(f"- {skipped.path}: {skipped.reason}")
    if result.weave:
        lines.append("")
        lines.append(
            f"{result.target_branch} -> {result.merged_commit} "
            f"({result.weave.rewritten_commits} commit(s) rewritten)"
        )
    return "\n".join(lines)


def build_report(result: JoinResult) -> Dict[str, object]:
    sources: List[Dict[str, object]] = []
    rewritten = {}
    if result.weave:
        rewritten = {tip.source.path: tip.rewritten for tip in result.weave.tips}
    for source in result.sources:
        sources.append(
            {
                "name": source.name,
                "path": str(source.path),
                "branch": source.branch,
                "ref": source.ref,
                "prefix": source.destination,
                "tip": source.tip.decode("ascii"),
                "rewritten_tip": (
                    rewritten[source.path].decode("ascii") if source.path in rewritten else None
                ),
            }
        )
    return {
        "target": str(result.target),
        "branch": result.target_branch,
        "dry_run": result.dry_run,
        "created_target": result.created_target,
        "merged_commit": result.merged_commit,
        "rewritten_commits": result.weave.rewritten_commits if result.weave else 0,
        "sources": sources,
        "skipped": [{"path": s.path, "reason": s.reason} for s in result.skipped],
    }


def write_report(output_path: Path, result: JoinResult) -> None:
    if output_path.suffix == ".json":
        output_path.write_text(json.dumps(build_report(result), indent=2) + "\n")
    else:
        write_markdown_report(output_path, result)
    logging.info("Wrote report to %s", output_path)


def write_markdown_report(output_path: Path, result: JoinResult) -> None:
    report = build_report(result)
    lines = ["# Repo Weaver Report", ""]
    lines.append(f"- Target: `{report['target']}`")
    lines.append(f"- Branch: `{report['branch']}`")
    if report["merged_commit"]:
        lines.append(f"- Merged commit: `{report['merged_commit']}`")
        lines.append(f"- Commits rewritten: {report['rewritten_commits']}")
    else:
        lines.append("- Dry run: nothing written")
    lines.append("")

    lines.append("## Repositories")
    lines.append("")
    for source in report["sources"]:
        lines.append(f"- **{source['name']}** — `{source['prefix']}/`")
        lines.append(f"  - Branch: `{source['branch']}` (`{source['ref']}`)")
        lines.append(f"  - Tip: `{source['tip']}`")
        if source["rewritten_tip"]:
            lines.append(f"  - Rewritten tip: `{source['rewritten_tip']}`")
        lines.append("")

    if report["skipped"]:
        lines.append("## Skipped")
        lines.append("")
        for skipped in report["skipped"]:
            lines.append(f"- `{skipped['path']}`: {skipped['reason']}")
        lines.append("")

    output_path.write_text("\n".join(lines).rstrip() + "\n")
