"""
Doit file to wrap development workflow commands.
"""

import shutil
from pathlib import Path

from doit.task import Task
from doit.tools import create_folder

PACKAGE = "livetree"

# artifact output
OUT_PATH = Path("__out__")

# test coverage results
TESTS_PATH = OUT_PATH / "test"
JUNIT_PATH = TESTS_PATH / "junit.xml"
COV_PATH = TESTS_PATH / "cov"
COV_HTML_PATH = COV_PATH / "html"
COV_XML_PATH = COV_PATH / "coverage.xml"

# static analysis results
ANALYSIS_PATH = OUT_PATH / "analysis"
MYPY_PATH = ANALYSIS_PATH / "mypy"
MYPY_HTML_PATH = MYPY_PATH / "html"
MYPY_XML_PATH = MYPY_PATH / "xml"


def cleanup_dir(output_dir: Path):
    if output_dir.exists():
        shutil.rmtree(output_dir)


def task_pytest() -> Task:
    """
    Run pytest and generate coverage reports.
    """

    args = [
        "pytest",
        f"--cov={PACKAGE}",
        f"--cov-report=html:{COV_HTML_PATH}",
        f"--cov-report=xml:{COV_XML_PATH}",
        f"--junitxml={JUNIT_PATH}",
    ]

    return Task(
        "test",
        actions=[
            (create_folder, [COV_PATH]),
            " ".join(args),
        ],
        targets=[
            f"{COV_HTML_PATH}/index.html",
            COV_XML_PATH,
            JUNIT_PATH,
        ],
        file_dep=[],
        clean=[(cleanup_dir, [COV_PATH])],
    )


def task_format() -> Task:
    """
    Run formatters on package, tests and this file.
    """

    sources = " ".join([PACKAGE, "test", "dodo.py"])

    return Task(
        "format",
        actions=[
            f"autoflake --remove-all-unused-imports --remove-unused-variables -i -r {sources}",
            f"isort {sources}",
            f"black {sources}",
            "toml-sort -i pyproject.toml",
        ],
        targets=[],
        file_dep=[],
    )


def task_analysis() -> Task:
    """
    Run static analysis tools.
    """

    mypy_args = [
        "mypy",
        "--html-report",
        str(MYPY_HTML_PATH),
        "--cobertura-xml-report",
        str(MYPY_XML_PATH),
        PACKAGE,
    ]

    pyright_args = [
        "pyright",
        PACKAGE,
    ]

    return Task(
        "analysis",
        actions=[
            " ".join(mypy_args),
            " ".join(pyright_args),
        ],
        targets=[],
        file_dep=[],
    )
