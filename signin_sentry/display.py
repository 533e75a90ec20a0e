import pytz

LOCAL_TIME_FORMAT = "%m/%d/%Y %I:%M:%S %p %Z"

COLUMNS = [
    # (header, width)
    ("Time", 26),
    ("User", 36),
    ("IP Address", 18),
    ("CA Status", 14),
    ("Code", 7),
    ("Resource", 24),
]


def format_local_timestamp(timestamp, tz_name="US/Eastern"):
    return timestamp.astimezone(pytz.timezone(tz_name)).strftime(LOCAL_TIME_FORMAT)


def _row(values):
    return "  ".join(f"{str(value)[:width]:{width}}" for value, (_, width) in zip(values, COLUMNS))


def format_table(title, events, tz_name="US/Eastern"):
    """Render events as a fixed-width text table, one line per event."""
    width = sum(w for _, w in COLUMNS) + 2 * (len(COLUMNS) - 1)
    lines = [f"{title} ({len(events)})", "-" * width, _row([h for h, _ in COLUMNS]), "-" * width]
    if not events:
        lines.append("  (none)")
    for event in events:
        lines.append(_row([
            format_local_timestamp(event.timestamp, tz_name),
            event.principal,
            event.source_ip,
            event.conditional_access_status,
            event.error_code or "",
            event.resource_name,
        ]))
    lines.append("-" * width)
    return "\n".join(lines)


def render_partitions(new, previous, tz_name="US/Eastern", out=print):
    """Print the New and Previous partitions as two separate tables."""
    out("\n" + format_table(">>> NEW SUSPICIOUS SIGN-INS <<<", new, tz_name))
    out("\n" + format_table("Previously seen sign-ins", previous, tz_name))


def alert_subject(new):
    """The event an alert summarises: the last New event in fetch order."""
    return new[-1] if new else None


def alert_summary(new, tz_name="US/Eastern"):
    event = alert_subject(new)
    if event is None:
        return ""
    return (
        f"{len(new)} new suspicious sign-in(s). Latest: {event.principal} from "
        f"{event.source_ip or 'unknown IP'} at {format_local_timestamp(event.timestamp, tz_name)} "
        f"(CA status: {event.conditional_access_status or 'n/a'}, "
        f"code: {event.error_code or 'n/a'}, resource: {event.resource_name or 'n/a'})"
    )
