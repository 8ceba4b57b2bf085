"""Client for the external text-completion oracle."""

from sql_sandbox.oracle.client import FeedbackClient, parse_verdict

__all__ = ["FeedbackClient", "parse_verdict"]
