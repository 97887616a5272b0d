"""Render the interaction log as JSONL, Markdown, TSV and CSV."""

from __future__ import annotations

import csv
import io
import json
import logging
import os
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Sequence

from .models import InteractionRecord

logger = logging.getLogger("phasecrawl.synthesis")

CSV_HEADERS = ["timestamp", "phase", "interaction", "url", "text", "title"]


def _iso(ms: int) -> str:
    stamp = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _single_line(value: str) -> str:
    return " ".join((value or "").split())


class DataSynthesizer:
    """Turns InteractionRecords into training-style and report outputs."""

    def __init__(self, log: Sequence[InteractionRecord]):
        self.log = list(log)

    @staticmethod
    def _prompt(entry: InteractionRecord) -> str:
        return (
            f"Extract and validate the hyperlink discovered during {entry.interaction_kind.value} "
            f"operation at crawl phase {entry.phase}.\n"
            f"Provide the URL, anchor text, and contextual metadata."
        )

    @staticmethod
    def _completion(entry: InteractionRecord) -> str:
        d = entry.discovery
        return (
            f"Found hyperlink: {d.url}\n"
            f"Anchor text: \"{d.anchor_text}\"\n"
            f"Title attribute: \"{d.title or 'N/A'}\"\n"
            f"Discovery phase: {entry.phase}\n"
            f"Interaction type: {entry.interaction_kind.value}"
        )

    def to_jsonl(self) -> str:
        lines = []
        for index, entry in enumerate(self.log):
            lines.append(json.dumps({
                "instruction": self._prompt(entry),
                "context": {
                    "phase": entry.phase,
                    "timestamp": _iso(entry.timestamp),
                    "interaction": entry.interaction_kind.value,
                    "index": index,
                },
                "response": self._completion(entry),
                "metadata": {
                    "url": entry.discovery.url,
                    "text": entry.discovery.anchor_text,
                },
            }, ensure_ascii=False))
        return "\n".join(lines)

    def to_markdown(self) -> str:
        md = "# LPS Discovery Report\n\n"
        md += f"**Generated:** {_iso(int(datetime.now(timezone.utc).timestamp() * 1000))}\n"
        md += f"**Total Discoveries:** {len(self.log)}\n\n"

        md += "## Summary\n\n"
        by_interaction = Counter(e.interaction_kind.value for e in self.log)
        for kind, count in by_interaction.items():
            md += f"- **{kind}**: {count} discoveries\n"

        md += "\n## Detailed Discoveries\n\n"
        by_phase: Dict[int, List[InteractionRecord]] = defaultdict(list)
        for entry in self.log:
            by_phase[entry.phase].append(entry)

        for phase in sorted(by_phase):
            md += f"### Phase {phase}\n\n"
            for entry in by_phase[phase]:
                d = entry.discovery
                md += f"- [{d.anchor_text}]({d.url}) ({entry.interaction_kind.value})\n"
            md += "\n"

        return md

    def to_raw(self) -> str:
        return "\n".join(
            f"{e.timestamp}\t{e.phase}\t{e.interaction_kind.value}"
            f"\t{_single_line(e.discovery.url)}\t{_single_line(e.discovery.anchor_text)}"
            for e in self.log
        )

    def to_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for e in self.log:
            writer.writerow([
                _iso(e.timestamp),
                e.phase,
                e.interaction_kind.value,
                e.discovery.url,
                e.discovery.anchor_text,
                e.discovery.title or "",
            ])
        return buf.getvalue()

    def write_all(self, output_dir: str) -> List[str]:
        """Write every format under ``output_dir``. Failures are logged, not raised."""
        outputs = {
            "output.jsonl": self.to_jsonl,
            "report.md": self.to_markdown,
            "raw.txt": self.to_raw,
            "output.csv": self.to_csv,
        }
        written: List[str] = []
        try:
            os.makedirs(output_dir, exist_ok=True)
            for name, render in outputs.items():
                path = os.path.join(output_dir, name)
                with open(path, "w", encoding="utf-8") as f:
                    f.write(render())
                written.append(path)
        except OSError as e:
            logger.error(f"❌ Failed to write outputs: {e}")
            return written

        logger.info(f"📝 Outputs saved to {output_dir}/")
        return written
