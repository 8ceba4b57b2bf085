"""Sandbox core: splitting, validation, access control, copies and execution."""

from sql_sandbox.sandbox.access import (
    AccessCapability,
    AccessGate,
    OwnerCapability,
    WorksheetDelegation,
)
from sql_sandbox.sandbox.copies import CopyManager
from sql_sandbox.sandbox.engine import ExecutionEngine
from sql_sandbox.sandbox.splitter import split_statements
from sql_sandbox.sandbox.validator import classify, validate_manipulation, validate_read_only

__all__ = [
    "AccessCapability",
    "AccessGate",
    "CopyManager",
    "ExecutionEngine",
    "OwnerCapability",
    "WorksheetDelegation",
    "classify",
    "split_statements",
    "validate_manipulation",
    "validate_read_only",
]
