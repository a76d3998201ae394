from collections import Counter
from typing import Iterable, Optional, TextIO
import logging
import sys

from tqdm import tqdm


class ScanProgress:
    """
    Per-domain progress for a scan: a bar on stderr that shows the last domain
    finished and running finding counts by status, with console lines written
    above it. Everything printed during a scan should go through .write().
    """

    def __init__(self, total: int, disable: bool = False, log_file: Optional[str] = None,
                 out: Optional[TextIO] = None):
        self.total = total
        self.counts: Counter = Counter()
        self.done = 0
        self.logger = None
        self._out = out or sys.stdout
        self._bar = None

        if log_file:
            logging.basicConfig(
                filename=log_file,
                level=logging.INFO,
                format="%(asctime)s - %(levelname)s - %(message)s"
            )
            self.logger = logging.getLogger(__name__)
            self.logger.info("Scan of %d domain(s) started.", total)

        if not disable:
            self._bar = tqdm(
                total=total,
                desc="Scanning",
                unit="domain",
                leave=False,
                dynamic_ncols=True,
                file=sys.stderr,
                mininterval=0.1,
            )

    def write(self, text: str):
        """Print above the bar and keep the bar pinned at the bottom."""
        tqdm.write(text, file=self._out)
        if self._bar is not None:
            self._bar.refresh()
        if self.logger:
            self.logger.info(text)

    def domain_done(self, domain: str, statuses: Iterable[object]):
        """Count one finished domain and the statuses of its findings."""
        self.done += 1
        for status in statuses:
            self.counts[getattr(status, "value", status)] += 1
        tally = " ".join(f"{k}={v}" for k, v in sorted(self.counts.items()))
        if self._bar is not None:
            self._bar.set_postfix_str(f"{domain} {tally}".rstrip(), refresh=False)
            self._bar.update(1)
        if self.logger:
            self.logger.info("Scanned %s (%d/%d) %s", domain, self.done, self.total, tally)

    def close(self):
        if self._bar is not None:
            self._bar.close()
            self._bar = None
