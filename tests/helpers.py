from datetime import datetime, timedelta, timezone

NOW = datetime(2019, 1, 20, 12, 0, 0, tzinfo=timezone.utc)


def make_record(bug_id, owner="owner@mozilla.com", priority="--", resolution="---",
                opened_days_ago=0, product="Core", component="DOM"):
    """Build one CSV row the way csv.DictReader returns it."""
    opened = NOW - timedelta(days=opened_days_ago)
    return {
        "Bug ID": str(bug_id),
        "Triage Owner": owner,
        "Product": product,
        "Component": component,
        "Status": "NEW",
        "Resolution": resolution,
        "Priority": priority,
        "Opened": opened.strftime("%Y-%m-%d %H:%M:%S"),
    }


class FakeResponse:
    """Stand-in for a streamed requests.Response."""

    def __init__(self, lines, status_code=200, error=None):
        self.lines = lines
        self.status_code = status_code
        self.error = error
        self.encoding = None
        self.closed = False

    def iter_lines(self, decode_unicode=False):
        for line in self.lines:
            yield line
        if self.error is not None:
            raise self.error

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False
