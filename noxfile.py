"""Nox sessions for the flash sale bot."""

import nox

nox.options.sessions = ["tests", "lint"]
python_versions = ["3.11", "3.12"]
source_dirs = ["flashsale", "tests"]


@nox.session(python=python_versions)
def tests(session):
    """Run the test suite with branch coverage for the flashsale package."""
    session.install("-e", ".[dev]")
    session.run(
        "pytest",
        "--cov=flashsale",
        "--cov-branch",
        "--cov-report=term-missing",
        "--cov-report=xml:coverage.xml",
        "--cov-fail-under=80",
        *session.posargs,
    )


@nox.session(python=python_versions[0])
def lint(session):
    """Check style with ruff."""
    session.install("ruff>=0.1.0")
    session.run("ruff", "check", *source_dirs)
    session.run("ruff", "format", "--check", *source_dirs)


@nox.session(python=python_versions[0])
def format_code(session):
    session.install("ruff>=0.1.0")
    session.run("ruff", "format", *source_dirs)
    session.run("ruff", "check", "--fix", *source_dirs)


@nox.session(python=python_versions[0], name="test-one")
def test_one(session):
    """Run a single test module or node id, e.g. ``nox -s test-one -- tests/test_scheduler.py``."""
    if not session.posargs:
        session.error("Please provide a test file or function to run")

    session.install("-e", ".[dev]")
    session.run("pytest", "-v", "--no-cov", *session.posargs)
