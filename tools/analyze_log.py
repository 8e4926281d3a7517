# tools/analyze_log.py
"""
Tiny helper to compute simple stats from a hubcrawl TSV run log.

Usage:
    python3 tools/analyze_log.py logs/run.tsv

Outputs:
    - rows by verdict (confirmed / rejected / inconclusive)
    - hit rate per generating strategy
    - confirmed hubs per kind
    - average elapsed_ms and fetch attempts per row
    - top rejection reasons
    - the STAT rows, as written by the controller
"""

import csv
import sys
from collections import Counter, defaultdict

COLUMNS = [
    "timestamp", "url", "verdict", "status", "domain", "kind", "strategy", "priority",
    "confidence", "attempts", "elapsed_ms", "articles", "reason",
]


def analyze(path: str):
    verdicts = Counter()
    by_strategy = defaultdict(Counter)
    confirmed_kinds = Counter()
    reasons = Counter()
    stats = []
    rows = 0
    total_elapsed = 0
    total_attempts = 0

    with open(path, "r", encoding="utf-8", newline="") as f:
        r = csv.reader(f, delimiter="\t")
        for row in r:
            if not row or row[0] == "timestamp":
                continue
            if row[0] == "STAT":
                stats.append(row[1:])
                continue
            if len(row) < len(COLUMNS):
                continue
            rec = dict(zip(COLUMNS, row))
            try:
                elapsed_ms = int(rec["elapsed_ms"])
                attempts = int(rec["attempts"])
            except ValueError:
                continue

            rows += 1
            total_elapsed += max(elapsed_ms, 0)
            total_attempts += max(attempts, 0)
            verdicts[rec["verdict"]] += 1
            by_strategy[rec["strategy"]][rec["verdict"]] += 1
            if rec["verdict"] == "confirmed":
                confirmed_kinds[rec["kind"]] += 1
            elif rec["verdict"] == "rejected":
                reasons[rec["reason"]] += 1

    print(f"File: {path}")
    print(f"Rows: {rows}")
    for verdict in ("confirmed", "rejected", "inconclusive"):
        print(f"  {verdict}: {verdicts[verdict]}")
    if rows:
        print(f"Avg elapsed (ms): {total_elapsed / rows:.2f}")
        print(f"Avg fetch attempts: {total_attempts / rows:.2f}")
    print("Hit rate by strategy:")
    for name, counts in sorted(by_strategy.items()):
        total = sum(counts.values())
        print(f"  {name:<22} {counts['confirmed']:>4}/{total:<4} ({counts['confirmed'] / total:.0%})")
    print("Confirmed hubs by kind:")
    for kind, cnt in confirmed_kinds.most_common():
        print(f"  {kind}: {cnt}")
    print("Top rejection reasons:")
    for reason, cnt in reasons.most_common(10):
        print(f"  {cnt:>4}  {reason}")
    if stats:
        print("Run stats:")
        for stat in stats:
            print("  " + " = ".join(stat))


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python3 tools/analyze_log.py <path_to_tsv>", file=sys.stderr)
        sys.exit(2)
    analyze(sys.argv[1])
