import json


def to_plain_text(log: list[dict]) -> str:
    """Convert transcript log to plain text.

    Agent lines prefixed with "Agent:", caller lines with "Caller:".
    """
    if not log:
        return ""

    lines = []
    for entry in log:
        role = entry.get("role", "")
        if role == "agent":
            lines.append(f"Agent: {entry['content']}")
        elif role == "user":
            lines.append(f"Caller: {entry['content']}")
    return "\n".join(lines)


def to_timestamped_dump(
    log: list[dict],
    call_sid: str,
    final_state: str,
    duration: float = 0.0,
    fields: dict | None = None,
) -> dict:
    """Build the end-of-call record written to the log.

    Timestamps are converted to seconds relative to the first entry.
    Entries missing a timestamp are skipped.
    """
    base_time = 0.0
    for entry in log:
        if "timestamp" in entry:
            base_time = entry["timestamp"]
            break

    entries = []
    for entry in log:
        if "timestamp" not in entry:
            continue
        entries.append({
            "t": round(entry["timestamp"] - base_time, 1),
            "role": entry["role"],
            "state": entry.get("state", ""),
            "content": entry.get("content", ""),
        })

    return {
        "call_sid": call_sid,
        "final_state": final_state,
        "duration_s": round(duration, 1),
        "fields": dict(fields or {}),
        "entries": entries,
    }


def chunk_transcript_dump(dump: dict, max_bytes: int = 3500) -> list[str]:
    """Split a dump into log lines of the form TRANSCRIPT_DUMP|N/M|{json}.

    The first line carries the header fields; later lines carry entries only.
    A single entry larger than max_bytes still gets a line of its own.
    """
    header = {k: v for k, v in dump.items() if k != "entries"}
    entries = dump.get("entries", [])

    groups: list[list[dict]] = [[]]
    size = len(json.dumps({**header, "entries": []}).encode("utf-8"))
    for entry in entries:
        entry_size = len(json.dumps(entry).encode("utf-8")) + 2
        if groups[-1] and size + entry_size > max_bytes:
            groups.append([])
            size = len(json.dumps({"call_sid": dump.get("call_sid"), "entries": []}).encode("utf-8"))
        groups[-1].append(entry)
        size += entry_size

    total = len(groups)
    lines = []
    for i, group in enumerate(groups, start=1):
        body = {**header, "entries": group} if i == 1 else {"call_sid": dump.get("call_sid"), "entries": group}
        lines.append(f"TRANSCRIPT_DUMP|{i}/{total}|{json.dumps(body)}")
    return lines
