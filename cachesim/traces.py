from typing import Iterator, List, Tuple

from cachesim.cache import AccessKind

ADDRESS_MASK = 0xFFFFFFFF


class TraceFormatError(ValueError):
    def __init__(self, line_no, line):
        super().__init__(f"Malformed trace line {line_no}: {line!r}")
        self.line_no = line_no
        self.line = line


def parse_trace_line(line: str, line_no: int = 0) -> Tuple[AccessKind, int]:
    """
    Parses `0xHEXADDRESS OPCHAR`. OPCHAR `r` is a read, anything else a write.
    """
    inf = line.split()
    if not inf or not inf[0].lower().startswith("0x"):
        raise TraceFormatError(line_no, line)
    try:
        address = int(inf[0], 16) & ADDRESS_MASK
    except ValueError:
        raise TraceFormatError(line_no, line) from None
    op = inf[1] if len(inf) > 1 else ""
    kind = AccessKind.READ if op == "r" else AccessKind.WRITE
    return kind, address


def iter_trace(lines) -> Iterator[Tuple[AccessKind, int]]:
    for line_no, line in enumerate(lines, start=1):
        if "#eof" in line:
            break
        if not line.strip():
            continue
        yield parse_trace_line(line, line_no)


def read_trace(path) -> List[Tuple[AccessKind, int]]:
    with open(path, "r") as f:
        return list(iter_trace(f))
