#!/usr/bin/env python3
"""
Test runner for the pet-care scheduler.
Run the whole suite or a single test module.

Usage:
    python run_tests.py                           # Run all tests
    python run_tests.py -k feeding                # Run specific test pattern
    python run_tests.py --module scheduler        # Run tests/test_scheduler.py only
    python run_tests.py --cov                     # Run with coverage
"""

import sys
import subprocess
from pathlib import Path


def run_tests(target="tests", args=None):
    """Run tests with pytest."""
    if args is None:
        args = []

    # Base pytest command
    cmd = [sys.executable, "-m", "pytest", target, "-v", "--tb=short"]

    # Add additional arguments
    cmd.extend(args)

    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, cwd=Path(__file__).parent)
    return result.returncode


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Run tests for the pet-care scheduler")
    parser.add_argument("-k", "--keyword", help="Run tests matching keyword")
    parser.add_argument("--module", help="Run a single module, e.g. 'push_gateway'")
    parser.add_argument("--cov", action="store_true", help="Run with coverage")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--pdb", action="store_true", help="Drop into debugger on failure")

    args = parser.parse_args()

    target = f"tests/test_{args.module}.py" if args.module else "tests"
    pytest_args = []

    if args.keyword:
        pytest_args.extend(["-k", args.keyword])

    if args.cov:
        pytest_args.extend(["--cov=app", "--cov-report=html", "--cov-report=term-missing"])

    if args.verbose:
        pytest_args.append("-vv")

    if args.pdb:
        pytest_args.append("--pdb")

    return run_tests(target, pytest_args)


if __name__ == "__main__":
    sys.exit(main())
