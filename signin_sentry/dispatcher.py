import logging
import os
import subprocess
import sys
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Deque, Dict, List, Optional

from .config import DEFAULT_WORKER_PATH
from .display import format_local_timestamp
from .errors import MissingWorkerProgram, SpawnFailure
from .models import Event, TriageRequest

logger = logging.getLogger(__name__)

PY = sys.executable  # same interpreter as the monitor (works in venvs)
WORKER_MODULE = "signin_sentry.triage_worker"
# Directory holding the signin_sentry package, so workers can import it from a checkout
PACKAGE_PARENT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

MAX_SPAWN_FAILURES = 50
WAIT_POLL_SECONDS = 1


def build_triage_requests(new: List[Event]) -> List[TriageRequest]:
    """One request per distinct principal, from that principal's last New event.

    Principals are compared as exact strings. Requests come out in order of
    each principal's first appearance.
    """
    latest: Dict[str, Event] = {}
    for event in new:
        # re-assigning keeps the key's original position
        latest[event.principal] = event
    return [TriageRequest.from_event(event) for event in latest.values()]


def build_worker_command(worker_path: str, request: TriageRequest, tz_name: str, policy: str) -> List[str]:
    """The bundled worker runs as a module; any other worker path runs as a script."""
    if os.path.abspath(worker_path) == os.path.abspath(DEFAULT_WORKER_PATH):
        target = ["-m", WORKER_MODULE]
    else:
        target = [worker_path]
    return [PY] + target + [
        request.principal,
        "--ip", request.source_ip,
        "--timestamp", format_local_timestamp(request.timestamp, tz_name),
        "--status", request.conditional_access_status,
        "--resource", request.resource_name,
        "--policy", policy,
    ]


def worker_env(environ=None) -> Dict[str, str]:
    """Copy of the environment with the package's parent directory first on PYTHONPATH."""
    env = dict(os.environ if environ is None else environ)
    paths = [PACKAGE_PARENT]
    if env.get("PYTHONPATH"):
        paths.append(env["PYTHONPATH"])
    env["PYTHONPATH"] = os.pathsep.join(paths)
    return env


def pool_size(config, os_name=os.name) -> int:
    """Workers allowed to run at once.

    Outside Windows every worker shares the monitor's terminal, so prompting
    workers run one at a time.
    """
    if os_name != "nt" and config.triage_policy == "prompt":
        return 1
    return config.max_concurrent_triage


class TriageDispatcher:
    """Starts one triage worker process per request on a bounded pool

    Each pool thread starts a worker and waits for it, so at most
    pool_size workers run at once; extra requests queue. After shutdown(wait=False)
    queued requests are dropped and running workers are no longer waited on.
    """

    def __init__(self, config, popen=subprocess.Popen):
        self.config = config
        self.popen = popen
        self.spawn_failures: Deque[SpawnFailure] = deque(maxlen=MAX_SPAWN_FAILURES)
        self.pool_size = pool_size(config)
        if self.pool_size < config.max_concurrent_triage:
            logger.info("Prompting triage workers share this terminal; running them one at a time")
        self._lock = threading.Lock()
        self._stopping = threading.Event()
        self._pending = []
        self._executor = ThreadPoolExecutor(
            max_workers=self.pool_size,
            thread_name_prefix="triage",
        )

    @property
    def stopping(self):
        return self._stopping.is_set()

    def check_worker_program(self):
        if not os.path.isfile(self.config.worker_path):
            raise MissingWorkerProgram(f"Triage worker not found: {self.config.worker_path}")

    def dispatch(self, requests: List[TriageRequest]):
        """Queue a worker for every request

        Returns:
            List of futures, one per queued worker. Each resolves to the
            worker's exit code, or None if it was not started or not waited
            for. Empty when the worker program is missing.
        """
        if not requests:
            return []
        try:
            self.check_worker_program()
        except MissingWorkerProgram as e:
            logger.warning("%s. Skipping triage for %s user(s) this cycle.", e, len(requests))
            return []

        futures = []
        for request in requests:
            logger.info("Queueing triage for %s (IP %s)", request.principal, request.source_ip or "unknown")
            futures.append(self._executor.submit(self._run_worker, request))
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()] + futures
        return futures

    def _spawn(self, command):
        kwargs = {"env": worker_env()}
        if os.name == "nt":
            # each worker prompts in its own console window
            kwargs["creationflags"] = subprocess.CREATE_NEW_CONSOLE
        return self.popen(command, **kwargs)

    def _run_worker(self, request: TriageRequest) -> Optional[int]:
        if self._stopping.is_set():
            logger.info("Monitor stopping; triage for %s not started", request.principal)
            return None

        command = build_worker_command(
            self.config.worker_path, request,
            self.config.display_timezone, self.config.triage_policy,
        )
        start_time = time.time()
        try:
            proc = self._spawn(command)
        except OSError as e:
            failure = SpawnFailure(request.principal, e)
            with self._lock:
                self.spawn_failures.append(failure)
            logger.error("%s", failure)
            return None

        logger.info("START: triage worker for %s (pid %s)", request.principal, proc.pid)
        while True:
            try:
                returncode = proc.wait(timeout=WAIT_POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if self._stopping.is_set():
                    logger.info("Monitor stopping; triage worker for %s (pid %s) left running",
                                request.principal, proc.pid)
                    return None

        status = "OK" if returncode == 0 else f"FAIL({returncode})"
        logger.info("END: triage worker for %s -> %s in %.0fs",
                    request.principal, status, time.time() - start_time)
        return returncode

    def shutdown(self, wait=False):
        """Stop the pool

        wait=True lets queued and running workers finish. wait=False drops
        queued requests and stops waiting on running workers, which keep
        their own process and console.
        """
        if not wait:
            self._stopping.set()
            with self._lock:
                pending, self._pending = self._pending, []
            for future in pending:
                future.cancel()
        self._executor.shutdown(wait=wait)
