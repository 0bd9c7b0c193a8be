"""Pytest test configuration."""

from os import chdir
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any

import numpy as np
from sybil import Sybil
from sybil.parsers.markdown import PythonCodeBlockParser, SkipParser

import wc_engine


def documentation_setup(namespace: dict[str, Any]) -> None:
    """Change to a temporary directory and preload the documentation namespace."""
    directory = Path(TemporaryDirectory().name)
    directory.mkdir(parents=True, exist_ok=True)
    chdir(directory)
    namespace["np"] = np
    namespace["wc_engine"] = wc_engine


pytest_collect_file = Sybil(
    parsers=[
        PythonCodeBlockParser(),
        SkipParser(),
    ],
    path=str(Path(__file__).parent / "docs"),
    pattern="**/*.md",
    setup=documentation_setup,
).pytest()
