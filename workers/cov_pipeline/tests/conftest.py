"""
Fixtures for cov_pipeline tests.

ELF fixtures are compiled on the fly with gcc (with and without debug
info); tests that need them are skipped when gcc is unavailable.
"""
import shutil
import subprocess
import textwrap
from pathlib import Path

import pytest

HELLO_C = textwrap.dedent("""\
    int add(int a, int b) {
        return a + b;
    }

    int main(void) {
        return add(1, -1);
    }
""")


def _compile(output: Path, debug: bool) -> Path:
    src = output.with_suffix(".c")
    src.write_text(HELLO_C)
    cmd = ["gcc", "-O0", str(src), "-o", str(output)]
    if debug:
        cmd.insert(1, "-g")
    subprocess.run(cmd, check=True, capture_output=True, timeout=30)
    if not debug:
        subprocess.run(["strip", "--strip-debug", str(output)], check=True, timeout=10)
    return output


@pytest.fixture(scope="session")
def gcc_ok():
    if shutil.which("gcc") is None or shutil.which("strip") is None:
        pytest.skip("gcc/strip not available - install gcc to run these tests")


@pytest.fixture(scope="session")
def elf_dir(tmp_path_factory, gcc_ok) -> Path:
    return tmp_path_factory.mktemp("elf_fixtures")


@pytest.fixture(scope="session")
def debug_binary(elf_dir) -> Path:
    """Small program compiled with -g."""
    return _compile(elf_dir / "bitcoin-debug", debug=True)


@pytest.fixture(scope="session")
def nodebug_binary(elf_dir) -> Path:
    """Same program with debug sections stripped."""
    return _compile(elf_dir / "bitcoin-nodebug", debug=False)


@pytest.fixture
def not_elf(tmp_path) -> Path:
    p = tmp_path / "bitcoin-script"
    p.write_bytes(b"#!/bin/sh\nexit 0\n")
    return p
