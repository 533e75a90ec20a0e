import argparse
import logging
import signal
import sys
import time

import requests

from .classifier import classify
from .config import load_config
from .dedup import DedupStore
from .dispatcher import TriageDispatcher, build_triage_requests
from .display import render_partitions
from .errors import AuthenticationFailure, ConfigError, SentryError
from .event_source import LogAnalyticsClient
from .logging_setup import setup_logging
from .models import CycleResult
from .notify import AlertNotifier
from .reports import write_cycle_report

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


class SignInMonitor:
    """Polls for suspicious sign-ins and triages users the first time they show up

    Each cycle: fetch -> classify -> display -> alert/report -> dispatch,
    then sleep for the polling interval. Runs until SIGINT/SIGTERM.

    Collaborators are built from the config unless passed in:
    - source: anything with fetch_events() returning Events oldest first
    - store: DedupStore, owned by this loop only
    - notifier: AlertNotifier
    - dispatcher: TriageDispatcher
    """

    def __init__(self, config, source=None, store=None, notifier=None, dispatcher=None,
                 sleep=time.sleep, out=print):
        self.config = config
        self.source = source or LogAnalyticsClient(config)
        self.store = store if store is not None else DedupStore(ttl_seconds=config.signature_ttl_seconds)
        self.notifier = notifier or AlertNotifier(config)
        self.dispatcher = dispatcher or TriageDispatcher(config)
        self.sleep = sleep
        self.out = out
        self.shutdown_requested = False
        self.cycles_run = 0

    def _handle_shutdown_signal(self, signum, frame):
        """Handle shutdown signals (SIGINT, SIGTERM)"""
        logger.info("Shutdown requested. Finishing current operations and exiting gracefully...")
        self.shutdown_requested = True

    def _setup_signal_handlers(self):
        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                previous[signum] = signal.signal(signum, self._handle_shutdown_signal)
            except ValueError as e:
                # not the main thread
                logger.warning("Could not register signal handler: %s", e)
        return previous

    def run_cycle(self):
        """Run one fetch/classify/display/alert/dispatch pass

        A failed fetch is logged and ends the cycle early; it is never raised.

        Returns:
            CycleResult
        """
        result = CycleResult()
        self.store.evict_expired()

        try:
            events = self.source.fetch_events()
        except (SentryError, requests.RequestException) as e:
            logger.error("Error fetching sign-ins: %s", e)
            result.error = str(e)
            return result

        result.new, result.previous = classify(events, self.store)
        logger.info("Cycle: %s new, %s previously seen (%s signatures tracked)",
                    len(result.new), len(result.previous), len(self.store))

        render_partitions(result.new, result.previous, self.config.display_timezone, out=self.out)

        if not result.new:
            return result

        self.notifier.alert(result.new)
        result.alerted = True

        if self.config.write_cycle_reports:
            try:
                write_cycle_report(result.new, self.config.report_dir)
            except OSError as e:
                logger.error("Error writing cycle report: %s", e)

        futures = self.dispatcher.dispatch(build_triage_requests(result.new))
        result.dispatched = len(futures)
        return result

    def _wait(self, seconds):
        # Break the sleep into smaller intervals to allow for quicker shutdown
        remaining = seconds
        while remaining > 0 and not self.shutdown_requested:
            step = min(10, remaining)
            self.sleep(step)
            remaining -= step

    def run(self, interval_seconds=None, max_cycles=None, handle_signals=True):
        """Poll until shutdown is requested (or max_cycles cycles have run)."""
        interval = interval_seconds or self.config.interval_seconds
        previous_handlers = self._setup_signal_handlers() if handle_signals else {}
        logger.info("Starting sign-in monitor, polling every %s seconds", interval)
        completed = False

        try:
            while not self.shutdown_requested:
                try:
                    self.run_cycle()
                except Exception as e:
                    logger.exception("Error in monitoring cycle: %s", e)
                self.cycles_run += 1

                if max_cycles is not None and self.cycles_run >= max_cycles:
                    completed = True
                    break
                if not self.shutdown_requested:
                    logger.info("Waiting %s seconds until next check...", interval)
                    self._wait(interval)
        finally:
            self.notifier.shutdown(wait=False)
            # a signal drops queued triage; a finished --once run lets it complete
            self.dispatcher.shutdown(wait=completed and not self.shutdown_requested)
            for signum, handler in previous_handlers.items():
                signal.signal(signum, handler)
            logger.info("Monitoring stopped after %s cycle(s).", self.cycles_run)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Watch Azure AD sign-ins for a suspicious pattern.")
    parser.add_argument("--config", default="config.env", help="Path to config.env")
    parser.add_argument("--interval", type=int, default=None, help="Override POLL_INTERVAL_SECONDS")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    return parser.parse_args(argv)


def main(argv=None):
    """Entry point. Exit code 0 on clean shutdown, 1 on a startup failure."""
    args = parse_args(argv)
    config = load_config(args.config)
    if args.interval is not None:
        config.interval_seconds = args.interval
    setup_logging(config.log_dir, name="signin_sentry")

    try:
        config.validate()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_STARTUP_FAILURE

    source = LogAnalyticsClient(config)
    try:
        source.auth.get_token()
    except AuthenticationFailure as e:
        logger.error("Authentication failed, not starting: %s", e)
        return EXIT_STARTUP_FAILURE

    monitor = SignInMonitor(config, source=source)
    monitor.run(max_cycles=1 if args.once else None)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
