import io
import logging

from progress_middleware import ScanProgress
from verification_middleware import RiskStatus as S


def test_counts_findings_by_status_per_domain():
    out = io.StringIO()
    progress = ScanProgress(total=3, out=out)
    progress.domain_done("a.example.com", [S.VULNERABLE, S.NOT_CLEAR])
    progress.domain_done("b.example.com", [])
    progress.domain_done("c.example.com", [S.VULNERABLE])
    progress.close()
    assert progress.done == 3
    assert progress.counts == {"VULNERABLE": 2, "NOT_CLEAR": 1}


def test_bar_postfix_names_last_domain_and_tally(capsys):
    progress = ScanProgress(total=2, out=io.StringIO())
    progress.domain_done("a.example.com", [S.UNKNOWN])
    assert progress._bar.postfix == "a.example.com UNKNOWN=1"
    progress.close()
    assert progress._bar is None


def test_quiet_has_no_bar_and_still_writes():
    out = io.StringIO()
    progress = ScanProgress(total=1, disable=True, out=out)
    progress.write("[*] Checking domain: a.example.com")
    progress.domain_done("a.example.com", [S.NOT_VULNERABLE])
    progress.close()
    assert out.getvalue() == "[*] Checking domain: a.example.com\n"
    assert progress.counts["NOT_VULNERABLE"] == 1


def test_log_file_records_lines_and_domains(tmp_path, caplog):
    caplog.set_level(logging.INFO, logger="progress_middleware")
    progress = ScanProgress(total=1, disable=True, log_file=str(tmp_path / "scan.log"), out=io.StringIO())
    progress.write("hello")
    progress.domain_done("a.example.com", [S.VULNERABLE])
    messages = [r.getMessage() for r in caplog.records]
    assert "hello" in messages
    assert "Scanned a.example.com (1/1) VULNERABLE=1" in messages
