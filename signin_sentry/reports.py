import csv
import datetime
import logging
import os

logger = logging.getLogger(__name__)

FIELDNAMES = ["timestamp", "principal", "source_ip", "conditional_access_status",
              "error_code", "resource_name"]


def write_cycle_report(new, report_dir, now=None):
    """Write this cycle's New events to a timestamped CSV

    Args:
        new: New events, in fetch order
        report_dir: Folder for the reports (created if missing)
        now: datetime used in the file name, defaults to local now

    Returns:
        Path of the written report, or None when there was nothing to write
    """
    if not new:
        return None

    os.makedirs(report_dir, exist_ok=True)
    stamp = (now or datetime.datetime.now()).strftime("%Y%m%d_%H%M%S")
    report_path = os.path.join(report_dir, f"new_signin_events_{stamp}.csv")

    with open(report_path, 'w', newline='', encoding='utf-8') as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=FIELDNAMES)
        writer.writeheader()
        for event in new:
            writer.writerow({
                "timestamp": event.timestamp.isoformat(),
                "principal": event.principal,
                "source_ip": event.source_ip,
                "conditional_access_status": event.conditional_access_status,
                "error_code": event.error_code or "",
                "resource_name": event.resource_name,
            })

    logger.info("Report generated with %s new sign-ins at %s", len(new), report_path)
    return report_path
