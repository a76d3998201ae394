def read_input_file(path: str) -> list[str]:
    """
    Read domains from a file (one per line), stripping comments/empties.
    Returns in file order; repeated lines are kept, each is scanned.
    Raises FileNotFoundError / OSError when the file cannot be read.
    """
    out = []
    with open(path, "r", encoding="utf-8", errors="ignore") as fh:
        for line in fh:
            s = line.strip()
            if not s or s.startswith("#"):
                continue
            out.append(s)
    return out
