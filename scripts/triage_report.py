#!/usr/bin/env python3
"""
Bugzilla Triage Report

Reads bugs filed during the current release cycle for the Firefox products
from the Bugzilla CSV export and reports the triage status of all unresolved
bugs, broken down by triage owner and by component.
"""

import csv
import json
import math
import sys
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import urlencode

import requests
import rich.console
import rich.table
import rich.text

# Configuration
SCRIPT_DIR = Path(__file__).parent
ROOT_DIR = SCRIPT_DIR.parent
CONFIG_FILE = ROOT_DIR / "config.json"
OUT_DIR = ROOT_DIR / "out"

# Bugzilla
BUGZILLA_BASE = "https://bugzilla.mozilla.org/buglist.cgi"
BRANCH_DATE = "2018-12-10"  # YYYY-MM-DD of first nightly of current release
MAX_RECORDS = 10000  # max records Bugzilla returns for one query
REQUEST_TIMEOUT = 60

PRODUCTS = [
    "Core", "DevTools", "External Software Affecting Firefox", "Firefox",
    "Firefox Build System", "Firefox for Android", "Firefox for Echo Show",
    "Firefox for FireTV", "Firefox for iOS", "Focus", "Focus-iOS",
    "GeckoView", "NSPR", "NSS", "Toolkit", "WebExtensions",
]
COLUMNS = [
    "triage_owner", "product", "component", "bug_status", "resolution",
    "priority", "keywords", "reporter", "assigned_to", "short_desc",
    "changeddate", "opendate",
]
AUTOMATED_FILER = "intermittent-bug-filer@mozilla.bugs"

# Sentinels used by Bugzilla
UNRESOLVED = "---"
UNTRIAGED = "--"
PRIORITIES = ["p1", "p2", "p3", "p4", "p5"]
OTHER_PRIORITY = "other"

# Untriaged age groups
UNDER_WEEK = "< W"
UNDER_MONTH = "< M"
OVER_MONTH = "> M"
AGE_GROUPS = [UNDER_WEEK, UNDER_MONTH, OVER_MONTH]

# Report breakdowns: report name -> function deriving the key from a record
DIMENSIONS = {
    "Triage Owner": lambda record: record["Triage Owner"],
    "Component": lambda record: f"{record['Product']}::{record['Component']}",
}

# CSV Headers
REPORT_HEADERS = [
    "Category", "Untriaged", "%", "> M", "> W", "< W",
    "P1", "P2", "P3", "P4", "P5", "Total",
]
SORT_METRICS = ["> W", "Untriaged"]

DEFAULT_CONFIG: dict[str, Any] = {
    "branch_date": BRANCH_DATE,
    "products": PRODUCTS,
    "reports": list(DIMENSIONS),
    "sort_by": "> W",
    "track_age": True,
    "output_dir": None,
}


def load_config(path: Path = CONFIG_FILE) -> dict[str, Any] | None:
    """
    Load config.json over the compiled defaults.
    Returns None when the file does not hold a JSON object.
    """
    config = dict(DEFAULT_CONFIG)
    if not path.exists():
        return config

    with open(path, "r", encoding="utf-8") as f:
        overrides = json.load(f)

    if not isinstance(overrides, dict):
        print(f"❌ Config file must hold a JSON object: {path}")
        return None

    for key, value in overrides.items():
        if key not in DEFAULT_CONFIG:
            print(f"  ⚠️  Ignoring unknown config key: {key}")
            continue
        config[key] = value

    if not isinstance(config["products"], list) or not config["products"]:
        print("  ⚠️  'products' must be a non-empty list, using the default products")
        config["products"] = PRODUCTS

    if config["sort_by"] not in SORT_METRICS:
        print(f"  ⚠️  Unknown sort metric {config['sort_by']!r}, using '> W'")
        config["sort_by"] = "> W"

    # without age groups '> W' is always zero, so rank by untriaged count
    if not config["track_age"] and config["sort_by"] != "Untriaged":
        if overrides.get("sort_by") == "> W":
            print("  ⚠️  '> W' needs track_age, sorting by 'Untriaged' instead")
        config["sort_by"] = "Untriaged"

    return config


# =============================================================================
# Query
# =============================================================================

def build_query_url(last_id: int, branch_date: str = BRANCH_DATE,
                    products: list[str] | None = None) -> str:
    """Build the buglist CSV export URL for bugs with an id above last_id."""
    params = [
        ("chfield", "[Bug creation]"),
        ("chfieldfrom", branch_date),
        ("chfieldto", "Now"),
        ("columnlist", ",".join(COLUMNS)),
        ("email1", AUTOMATED_FILER),
        ("emailreporter1", "1"),
        ("emailtype1", "notequals"),
        ("f1", "bug_id"),
        ("o1", "greaterthan"),
        ("v1", str(last_id)),
        ("f2", "bug_severity"),
        ("o2", "notequals"),
        ("v2", "enhancement"),
        ("f3", "keywords"),
        ("o3", "nowordssubstr"),
        ("v3", "meta, feature"),
        ("limit", "0"),
    ]
    if products is None:
        products = PRODUCTS
    params.extend(("product", product) for product in products)
    params.extend([
        ("short_desc", r"^\[meta"),
        ("short_desc_type", "notregexp"),
        ("bug_type", "defect"),
        ("ctype", "csv"),
        ("human", "1"),
    ])
    return f"{BUGZILLA_BASE}?{urlencode(params)}"


# =============================================================================
# Fetching
# =============================================================================

def fetch_batch(url: str) -> Iterator[dict[str, str]]:
    """
    Stream one CSV export and yield its rows as they arrive.
    Errors are reported and end the batch; nothing is retried.
    """
    print(f"  🔎 fetching {url}")
    try:
        with requests.get(url, stream=True, timeout=REQUEST_TIMEOUT) as response:
            if response.status_code != 200:
                print(f"  ❌ HTTP {response.status_code}")
                return
            response.encoding = "utf-8"
            lines = response.iter_lines(decode_unicode=True)
            yield from csv.DictReader(lines)
    except (requests.RequestException, csv.Error) as e:
        print(f"  ❌ {e}")


# =============================================================================
# Aggregation
# =============================================================================

def age_in_weeks(opened: str, now: datetime) -> float:
    """Fractional weeks between an opened timestamp and now (UTC)."""
    created = datetime.fromisoformat(opened.strip())
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (now - created).total_seconds() / (7 * 24 * 3600)


def classify_age(weeks: float) -> str:
    """Place an age in exactly one group; boundaries belong to the younger group."""
    if weeks <= 1:
        return UNDER_WEEK
    if weeks <= 4:
        return UNDER_MONTH
    return OVER_MONTH


@dataclass
class CounterBucket:
    """Running triage counters for one owner or component."""
    total: int = 0
    priorities: dict[str, int] = field(
        default_factory=lambda: dict.fromkeys(PRIORITIES + [UNTRIAGED, OTHER_PRIORITY], 0)
    )
    ages: dict[str, int] = field(default_factory=lambda: dict.fromkeys(AGE_GROUPS, 0))

    @property
    def untriaged(self) -> int:
        return self.priorities[UNTRIAGED]

    @property
    def over_week(self) -> int:
        return self.ages[UNDER_MONTH] + self.ages[OVER_MONTH]


class TriageAggregator:
    """
    Folds Bugzilla records into per-report counter buckets.

    Owns every counter for the run; the fetch loop hands it records one at a
    time and reads back last_id to build the next query.
    """

    def __init__(self, dimensions: list[str] | None = None, now: datetime | None = None,
                 track_age: bool = True):
        names = dimensions if dimensions is not None else list(DIMENSIONS)
        self.dimensions = {name: DIMENSIONS[name] for name in names}
        self.now = now or datetime.now(timezone.utc)
        self.track_age = track_age
        self.reports: dict[str, dict[str, CounterBucket]] = {name: {} for name in self.dimensions}
        self.last_id = 0
        self.records = 0
        self.batch_count = 0

    def start_batch(self) -> None:
        self.batch_count = 0

    def add(self, record: dict[str, str]) -> None:
        """Count one record and, when unresolved, update every breakdown."""
        self.batch_count += 1
        self.records += 1

        bug_id = int(record["Bug ID"])
        if bug_id > self.last_id:
            self.last_id = bug_id

        if record["Resolution"].strip() != UNRESOLVED:
            return

        priority = record["Priority"].strip().lower()
        if priority not in PRIORITIES and priority != UNTRIAGED:
            print(f"  ⚠️  Bug {bug_id} has unknown priority {record['Priority']!r}")
            priority = OTHER_PRIORITY

        group = None
        if priority == UNTRIAGED and self.track_age:
            group = classify_age(age_in_weeks(record["Opened"], self.now))

        for name, key_for in self.dimensions.items():
            bucket = self.reports[name].setdefault(key_for(record), CounterBucket())
            bucket.total += 1
            bucket.priorities[priority] += 1
            if group:
                bucket.ages[group] += 1


def is_last_batch(count: int, page_size: int = MAX_RECORDS) -> bool:
    """An undersized batch means Bugzilla has nothing further to return."""
    return count < page_size


def collect(aggregator: TriageAggregator, branch_date: str = BRANCH_DATE,
            products: list[str] | None = None, page_size: int = MAX_RECORDS,
            fetch=fetch_batch) -> int:
    """Fetch batches until one comes back short. Returns the number of batches."""
    batches = 0
    last_id = aggregator.last_id
    while True:
        url = build_query_url(last_id, branch_date, products)
        aggregator.start_batch()
        for record in fetch(url):
            aggregator.add(record)
        batches += 1

        print(f"  got {aggregator.batch_count} records")
        print(f"  last id {aggregator.last_id}")

        if is_last_batch(aggregator.batch_count, page_size):
            print("  read last batch")
            return batches

        if aggregator.last_id <= last_id:
            print(f"  ⚠️  Full batch did not advance past bug {last_id}, stopping")
            return batches
        last_id = aggregator.last_id


# =============================================================================
# Reporting
# =============================================================================

def percent_untriaged(untriaged: int, total: int) -> int | str:
    """Share of untriaged bugs as a rounded percentage, '--' when there are none."""
    if total <= 0:
        return UNTRIAGED
    return math.floor(untriaged * 100 / total + 0.5)


def format_report(buckets: dict[str, CounterBucket], sort_by: str = "> W") -> list[dict[str, Any]]:
    """Flatten buckets into report rows, stalest first."""
    rows = []
    for category, bucket in buckets.items():
        row = {
            "Category": category,
            "Untriaged": bucket.untriaged,
            "%": percent_untriaged(bucket.untriaged, bucket.total),
            "> M": bucket.ages[OVER_MONTH],
            "> W": bucket.over_week,
            "< W": bucket.ages[UNDER_WEEK],
        }
        for priority in PRIORITIES:
            row[priority.upper()] = bucket.priorities[priority]
        row["Total"] = bucket.total
        rows.append(row)

    # sorted() keeps encounter order for ties, including with reverse=True
    return sorted(rows, key=lambda r: r[sort_by], reverse=True)


def render_table(name: str, rows: list[dict[str, Any]]) -> rich.table.Table:
    """Build the console table for one report, every column right-aligned."""
    table = rich.table.Table(title=name)
    for header in REPORT_HEADERS:
        table.add_column(header, justify="right")
    for row in rows:
        table.add_row(*(rich.text.Text(str(row[header])) for header in REPORT_HEADERS))
    return table


def write_report(name: str, rows: Iterable[dict[str, Any]], output_dir: Path = OUT_DIR) -> bool:
    """Write one report as CSV. Returns False if it could not be saved."""
    csv_path = output_dir / f"{name}.csv"
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        with open(csv_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=REPORT_HEADERS)
            writer.writeheader()
            writer.writerows(rows)
    except OSError as e:
        print(f"  ❌ Could not save {csv_path}: {e}")
        return False

    print(f"  ✅ saved data in {csv_path}")
    return True


def write_snapshot(output_dir: Path, summary: dict[str, Any], date: str | None = None) -> Path | None:
    """Save the run summary as snapshots/<date>.json under output_dir."""
    date = date or datetime.now(timezone.utc).strftime("%Y-%m-%d")
    snapshot_file = output_dir / "snapshots" / f"{date}.json"
    try:
        snapshot_file.parent.mkdir(parents=True, exist_ok=True)
        with open(snapshot_file, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2)
    except OSError as e:
        print(f"  ❌ Could not save snapshot {snapshot_file}: {e}")
        return None

    print(f"  ✅ Saved snapshot to {snapshot_file}")
    return snapshot_file


def main() -> int:
    """Main entry point."""
    print("🚀 Bugzilla Triage Report")

    config = load_config(CONFIG_FILE)
    if config is None:
        return 1
    output_dir = Path(config["output_dir"]) if config["output_dir"] else OUT_DIR

    reports = []
    for name in config["reports"]:
        if name in DIMENSIONS:
            reports.append(name)
        else:
            print(f"  ⚠️  Skipping unknown report: {name}")
    if not reports:
        print("❌ No reports configured")
        return 1

    print(f"   Since:   {config['branch_date']}")
    print(f"   Reports: {', '.join(reports)}")

    aggregator = TriageAggregator(reports, track_age=config["track_age"])
    batches = collect(aggregator, config["branch_date"], config["products"])

    console = rich.console.Console()
    formatted = {}
    saved = 0
    for name in reports:
        rows = format_report(aggregator.reports[name], config["sort_by"])
        formatted[name] = rows
        print()
        console.print(render_table(name, rows))
        if write_report(name, rows, output_dir):
            saved += 1

    write_snapshot(output_dir, {
        "collected_at": datetime.now(timezone.utc).isoformat(),
        "branch_date": config["branch_date"],
        "batches": batches,
        "records": aggregator.records,
        "last_id": aggregator.last_id,
        "reports": formatted,
    })

    print(f"\n✨ Done! Saved {saved}/{len(reports)} reports from {aggregator.records} records")
    return 0 if saved == len(reports) else 1


if __name__ == "__main__":
    sys.exit(main())
