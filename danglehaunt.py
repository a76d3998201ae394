import argparse
import logging
import os
import sys
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Tuple

from colorama import init

from config_middleware import _warn, load_config, resolve_settings
from input_middleware import read_input_file
from output_middleware import ConsoleSink, FindingSink
from probe_middleware import BucketProbe, HttpProbe
from progress_middleware import ScanProgress
from takeover_middleware import TakeoverMiddleware
from verification_middleware import RiskStatus, VerificationEngine

logger = logging.getLogger("danglehaunt")

SEPARATOR = "----------------------------------------"


class _Parser(argparse.ArgumentParser):
    """argparse that exits 1 on bad usage."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="danglehaunt",
        description="DangleHaunt: dangling DNS / CNAME takeover scanner",
        epilog="""Examples:
  danglehaunt domains.txt
  danglehaunt domains.txt --csv results.csv --ndjson results.ndjson
  danglehaunt domains.txt --threads 8 --color --follow-chain
""",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("domains_file", help="Path to input file with domains (one per line, '#' comments allowed)")

    parser.add_argument("--csv", default=None, help="Append CSV rows: domain,cname_target,provider,status,reason")
    parser.add_argument("--ndjson", default=None, help="Append one JSON object per finding")
    parser.add_argument("--config", default=None, help="YAML settings file (or DANGLEHAUNT_CONFIG)")

    parser.add_argument("--threads", type=int, default=None, help="Parallel domains (default: 1 = sequential, file order)")
    parser.add_argument("--quiet", action="store_true", default=None, help="Disable progress bar output")
    parser.add_argument("--logfile", default=None, help="Optional log file to write progress updates")
    parser.add_argument("--color", action="store_true", default=None, help="Color findings by status")

    parser.add_argument("--follow-chain", action="store_true", default=None,
                        help="Walk the whole CNAME chain and verify every hop")
    parser.add_argument("--no-public-resolvers", dest="public_resolvers", action="store_false", default=None,
                        help="Only use the system resolver (no public resolver fallback)")
    parser.add_argument("--http-hints", action="store_true", default=None,
                        help="Extra HEAD on S3-backed domains to surface visible S3 errors")
    parser.add_argument("--no-http-probe", action="store_true", default=None,
                        help="Skip HTTP probing; affected providers report 'Needs HTTP probe'")
    parser.add_argument("--no-bucket-probe", action="store_true", default=None,
                        help="Skip the anonymous S3 existence check")

    parser.add_argument("--http-timeout", type=float, default=None, help="HEAD timeout in seconds (default: 6)")
    parser.add_argument("--body-timeout", type=float, default=None, help="GET timeout in seconds (default: 8)")
    parser.add_argument("--dns-timeout", type=float, default=None, help="Per-query DNS timeout in seconds (default: 2)")
    parser.add_argument("--s3-region", default=None, help="Region for the anonymous S3 client (default: us-east-1)")
    return parser


def process_one(domain: str, om: TakeoverMiddleware) -> List[Tuple[str, object]]:
    """Run one domain and record its console lines and findings in order."""
    records: List[Tuple[str, object]] = []
    try:
        om.analyze(
            domain,
            on_event=lambda line: records.append(("line", line)),
            on_finding=lambda f: records.append(("finding", f)),
        )
    except Exception as e:
        logger.exception("Scan of %s aborted", domain)
        records.append(("line", f"    -> Error: {e}"))
    return records


def _summary(domains: int, counts: Counter) -> str:
    parts = [f"{s.value}={counts[s.value]}" for s in RiskStatus if counts[s.value]]
    total = sum(counts.values())
    line = f"Scan complete. {domains} domain(s), {total} finding(s)"
    return line + (": " + ", ".join(parts) if parts else ".")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = resolve_settings(vars(args), load_config(args.config))

    if settings["color"]:
        os.environ["DANGLEHAUNT_COLOR"] = "1"
        init(autoreset=True)
    os.environ["DNS_TIMEOUT"] = str(settings["dns_timeout"])

    try:
        domains = read_input_file(args.domains_file)
    except OSError as e:
        print(f"Cannot read domain file {args.domains_file}: {e}", file=sys.stderr)
        return 1

    threads = settings["threads"]
    if threads < 1:
        print("--threads must be a positive integer", file=sys.stderr)
        return 1

    progress = ScanProgress(
        total=len(domains),
        disable=settings["quiet"],
        log_file=settings["logfile"],
    )

    try:
        sink = FindingSink.open(
            console=ConsoleSink(progress.write, color=settings["color"]),
            csv_path=settings["csv"],
            ndjson_path=settings["ndjson"],
        )
    except OSError as e:
        progress.close()
        print(f"Cannot open output file: {e}", file=sys.stderr)
        return 1

    http_probe = None
    if settings["no_http_probe"]:
        _warn("HTTP probing disabled; providers that need it will report 'Needs HTTP probe'.")
    else:
        http_probe = HttpProbe(head_timeout=settings["http_timeout"], body_timeout=settings["body_timeout"])
    bucket_probe = None if settings["no_bucket_probe"] else BucketProbe(
        region=settings["s3_region"], timeout=settings["http_timeout"])

    engine = VerificationEngine(http_probe=http_probe, bucket_probe=bucket_probe, http_hints=settings["http_hints"])
    om = TakeoverMiddleware(engine, follow_chain=settings["follow_chain"],
                            public_fallback=settings["public_resolvers"])

    def replay(domain, records):
        statuses = []
        for kind, item in records:
            if kind == "finding":
                statuses.append(item.status)
                sink.emit(item)
            else:
                progress.write(item)
        progress.write(SEPARATOR)
        progress.domain_done(domain, statuses)

    with sink:
        progress.write("Starting scan for dangling DNS records...")
        progress.write(SEPARATOR)
        if threads == 1:
            for domain in domains:
                replay(domain, process_one(domain, om))
        else:
            with ThreadPoolExecutor(max_workers=threads) as pool:
                futs = {pool.submit(process_one, d, om): d for d in domains}
                for f in as_completed(futs):
                    replay(futs[f], f.result())
        progress.close()
        progress.write(_summary(len(domains), progress.counts))

    return 0


if __name__ == "__main__":
    sys.exit(main())
