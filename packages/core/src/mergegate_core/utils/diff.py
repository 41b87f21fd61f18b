def added_lines(patch_text: str) -> set[int]:
    """Return the new-file line numbers added or modified by a unified diff.

    The @@ header carries the starting new-file line of each hunk; context
    lines advance the counter, removed lines do not.
    """
    lines: set[int] = set()
    file_line: int | None = None

    for line in patch_text.splitlines():
        if line.startswith("@@"):
            try:
                new_file_range = line.split("+")[1].split(" ")[0]
                file_line = int(new_file_range.split(",")[0])
            except (IndexError, ValueError):
                file_line = None
            continue
        if line.startswith("+++") or line.startswith("---"):
            continue
        if file_line is None:
            continue
        if line.startswith("+"):
            lines.add(file_line)
            file_line += 1
        elif line.startswith("-"):
            pass  # removed lines do not advance the new-file counter
        else:
            file_line += 1

    return lines


def truncate(text: str, max_chars: int, label: str) -> str:
    if len(text) > max_chars:
        return text[:max_chars] + f"\n... [{label} truncated]"
    return text
