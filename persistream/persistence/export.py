"""Stream export formatters.

Provides JSON and Markdown export functions for a stream record and
its persisted body.
"""

from __future__ import annotations

import json

from persistream.schemas.stream import StreamBody, StreamRecord


def export_json(record: StreamRecord, body: StreamBody) -> str:
    """Export a stream as a formatted JSON string.

    Returns:
        Pretty-printed JSON with the record fields plus the body text.
    """
    payload = record.model_dump(mode="json")
    payload["status"] = body.status.value
    payload["text"] = body.text
    return json.dumps(payload, indent=2)


def export_markdown(record: StreamRecord, body: StreamBody) -> str:
    """Export a stream as a human-readable Markdown document.

    Returns:
        Markdown-formatted string.
    """
    lines: list[str] = []

    lines.append(f"# Stream: {record.stream_id}")
    lines.append("")

    lines.append("## Metadata")
    lines.append("")
    lines.append(f"- **Status:** {body.status.value}")
    lines.append(f"- **Created:** {record.created_at.isoformat()}")
    lines.append(f"- **Updated:** {record.updated_at.isoformat()}")
    lines.append(f"- **Chunks:** {record.chunk_count}")
    lines.append(f"- **Characters:** {len(body.text):,}")
    lines.append("")

    if record.prompt:
        lines.append("## Prompt")
        lines.append("")
        lines.append(record.prompt)
        lines.append("")

    lines.append("## Response")
    lines.append("")
    lines.append(body.text if body.text else "_(empty)_")
    lines.append("")

    lines.append("---")
    lines.append("*Generated by persistream*")
    lines.append("")

    return "\n".join(lines)
