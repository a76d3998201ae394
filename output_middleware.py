import csv
import json
import logging
import os
import threading
from contextlib import ExitStack
from typing import Callable, List, Optional

from colorama import Fore, Style

from verification_middleware import FINDING_FIELDS, Finding, RiskStatus

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    RiskStatus.VULNERABLE: Fore.RED,
    RiskStatus.POTENTIALLY_VULNERABLE: Fore.YELLOW,
    RiskStatus.EDGE_CASE: Fore.MAGENTA,
    RiskStatus.NOT_CLEAR: Fore.CYAN,
    RiskStatus.UNKNOWN: Fore.WHITE,
    RiskStatus.NOT_VULNERABLE: Fore.GREEN,
}


def format_console(finding: Finding, color: bool = False) -> str:
    line = f"       -> Provider: {finding.provider.value} | {finding.status.value} | {finding.reason}"
    if color:
        return STATUS_COLORS.get(finding.status, "") + line + Style.RESET_ALL
    return line


def _one_line(value: str) -> str:
    return (value or "").replace("\r", " ").replace("\n", " ").replace("\t", " ")


def ndjson_line(finding: Finding) -> str:
    """Single-line JSON object with exactly the five finding keys."""
    row = {k: _one_line(v) for k, v in finding.as_dict().items()}
    return json.dumps(row, ensure_ascii=False)


# =============================
# Sinks
# =============================
class _Sink:
    """Lock-guarded, best-effort writer. A failed write is logged, never raised."""

    name = "sink"

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def _write(self, finding: Finding):
        raise NotImplementedError

    def write(self, finding: Finding):
        with self._lock:
            try:
                self._write(finding)
            except (OSError, ValueError) as e:
                logger.warning("%s write failed for %s: %s", self.name, finding.domain, e)

    def close(self):
        pass


class ConsoleSink(_Sink):
    name = "console"

    def __init__(self, write: Callable[[str], None] = print, color: bool = False):
        super().__init__()
        self._out = write
        self.color = color

    def _write(self, finding: Finding):
        self._out(format_console(finding, self.color))


class _FileSink(_Sink):
    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self._existed = os.path.exists(path)
        self._fh = open(path, "a", encoding="utf-8", newline="")

    def close(self):
        with self._lock:
            if self._fh and not self._fh.closed:
                try:
                    self._fh.flush()
                finally:
                    self._fh.close()


class CsvSink(_FileSink):
    """
    Append rows `domain,cname_target,provider,status,reason`.
    Header only when the file did not exist yet; every field quoted, inner quotes doubled.
    """

    name = "csv"

    def __init__(self, path: str):
        super().__init__(path)
        self._writer = csv.writer(self._fh, quoting=csv.QUOTE_ALL, lineterminator="\n")
        if not self._existed:
            self._fh.write(",".join(FINDING_FIELDS) + "\n")
            self._fh.flush()

    def _write(self, finding: Finding):
        d = finding.as_dict()
        self._writer.writerow([d[k] for k in FINDING_FIELDS])
        self._fh.flush()


class NdjsonSink(_FileSink):
    name = "ndjson"

    def _write(self, finding: Finding):
        self._fh.write(ndjson_line(finding) + "\n")
        self._fh.flush()


class FindingSink:
    """Fan a finding out to every configured sink; opened once, closed on exit."""

    def __init__(self, sinks: Optional[List[_Sink]] = None):
        self.sinks = list(sinks or [])
        self._stack = ExitStack()

    @classmethod
    def open(cls, console: Optional[ConsoleSink] = None, csv_path: Optional[str] = None,
             ndjson_path: Optional[str] = None) -> "FindingSink":
        """Raises OSError when an output file cannot be opened; nothing is left open then."""
        fs = cls()
        try:
            if console is not None:
                fs.add(console)
            if csv_path:
                fs.add(CsvSink(csv_path))
            if ndjson_path:
                fs.add(NdjsonSink(ndjson_path))
        except OSError:
            fs.close()
            raise
        return fs

    def add(self, sink: _Sink):
        self.sinks.append(self._stack.enter_context(sink))

    def emit(self, finding: Finding):
        for s in self.sinks:
            s.write(finding)

    def close(self):
        self._stack.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
