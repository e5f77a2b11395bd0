"""
Operations package - Application service layer between CLI and core.

This package provides the Explorer facade that front ends talk to,
centralizes error mapping, and handles output formatting while keeping
CLI commands thin and testable.
"""
from .facade import DeletionResult, Explorer, ExplorerBuilder
from .mappers import exit_code_for, run_and_exit

__all__ = ["Explorer", "ExplorerBuilder", "DeletionResult", "exit_code_for", "run_and_exit"]
