"""Triage worker: shows one flagged sign-in and offers to revoke the user's sessions.

Started by the monitor as a separate process, one per affected user:

    python -m signin_sentry.triage_worker user@contoso.com --ip 1.2.3.4 --timestamp "..." \
        --status failure --resource "Microsoft Graph" --policy prompt

Steps: make sure a Graph session exists, print the sign-in, ask for
confirmation, revoke on "yes". Whatever error was recorded last is printed
before the process exits.
"""

import argparse
import logging
import os
import sys
from dataclasses import dataclass

from signin_sentry.config import TRIAGE_POLICIES, load_config
from signin_sentry.errors import ConfigError, SentryError
from signin_sentry.graph import GRAPH_SCOPE, ClientCredentialAuth, revoke_sign_in_sessions
from signin_sentry.logging_setup import setup_logging

logger = logging.getLogger("signin_sentry.triage_worker")

# States
START = "Start"
ENSURE_SESSION = "EnsureSession"
DISPLAY_CONTEXT = "DisplayContext"
AWAITING_CONFIRMATION = "AwaitingConfirmation"
REVOKING = "Revoking"
DONE = "Done"

# Exit codes
EXIT_OK = 0
EXIT_REVOCATION_FAILED = 1
EXIT_NO_SESSION = 3


@dataclass
class TriageContext:
    principal: str
    source_ip: str = ""
    timestamp: str = ""
    conditional_access_status: str = ""
    resource_name: str = ""

    def describe(self):
        return (
            f"User: {self.principal} | IP: {self.source_ip or 'n/a'} | "
            f"Time: {self.timestamp or 'n/a'} | CA Status: {self.conditional_access_status or 'n/a'} | "
            f"Resource: {self.resource_name or 'n/a'}"
        )


###############################################################################
# Confirmation policies
###############################################################################
def prompt_policy(context, input_fn=input):
    """Ask the operator. Only y/yes confirms; anything else, or no stdin, declines."""
    try:
        answer = input_fn(f"Revoke all sign-in sessions for {context.principal}? (y/n): ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def decline_policy(context):
    return False


def approve_policy(context):
    return True


POLICIES = {
    "prompt": prompt_policy,
    "decline": decline_policy,
    "approve": approve_policy,
}


class TriageWorker:
    """Runs the confirmation flow for one user and records every state it passes."""

    def __init__(self, context, auth, policy=prompt_policy, revoke=None, out=print):
        self.context = context
        self.auth = auth
        self.policy = policy
        self.revoke = revoke or revoke_sign_in_sessions
        self.out = out
        self.state = START
        self.history = [START]
        self.last_error = None
        self.revoked = False

    def _enter(self, state):
        self.state = state
        self.history.append(state)

    def run(self):
        """Walk the state machine to Done and return the process exit code."""
        exit_code = EXIT_OK

        self._enter(ENSURE_SESSION)
        try:
            self.auth.get_token()
        except SentryError as e:
            self.last_error = str(e)
            logger.error("Could not establish a Graph session: %s", e)
            self._enter(DONE)
            self.report_last_error()
            return EXIT_NO_SESSION

        self._enter(DISPLAY_CONTEXT)
        self.out("\n=== Suspicious sign-in ===")
        self.out(self.context.describe())

        self._enter(AWAITING_CONFIRMATION)
        confirmed = self.policy(self.context)

        if confirmed:
            self._enter(REVOKING)
            try:
                self.revoke(self.auth, self.context.principal)
                self.revoked = True
                self.out(f"Sessions revoked for {self.context.principal}.")
            except SentryError as e:
                self.last_error = str(e)
                logger.error("Revocation failed for %s: %s", self.context.principal, e)
                exit_code = EXIT_REVOCATION_FAILED
        else:
            logger.info("Revocation declined for %s", self.context.principal)
            self.out(f"No action taken for {self.context.principal}.")

        self._enter(DONE)
        self.report_last_error()
        return exit_code

    def report_last_error(self):
        if self.last_error:
            self.out(f"Last error: {self.last_error}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Review a suspicious sign-in and optionally revoke the user's sessions.")
    parser.add_argument("principal", help="User principal name")
    parser.add_argument("--ip", default="", help="Source IP of the sign-in")
    parser.add_argument("--timestamp", default="", help="Local time of the sign-in, already formatted")
    parser.add_argument("--status", default="", help="Conditional Access status")
    parser.add_argument("--resource", default="", help="Resource the sign-in targeted")
    parser.add_argument("--policy", default=None, choices=TRIAGE_POLICIES,
                        help="How to confirm (defaults to TRIAGE_POLICY)")
    parser.add_argument("--config", default="config.env", help="Path to config.env")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    config = load_config(args.config)
    setup_logging(config.log_dir, name="triage_worker")

    context = TriageContext(
        principal=args.principal,
        source_ip=args.ip,
        timestamp=args.timestamp,
        conditional_access_status=args.status,
        resource_name=args.resource,
    )
    policy_name = args.policy or config.triage_policy
    policy = POLICIES.get(policy_name, decline_policy)

    try:
        config.validate(require_workspace=False)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        print(f"Last error: {e}")
        return EXIT_NO_SESSION

    worker = TriageWorker(context, ClientCredentialAuth(config, scope=GRAPH_SCOPE), policy=policy)
    exit_code = worker.run()

    # Keep the console window open on Windows so the operator can read it
    if os.name == "nt" and policy_name == "prompt":
        try:
            if sys.stdin.isatty():
                input("\n--- Press Enter to close ---")
        except EOFError:
            pass

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
