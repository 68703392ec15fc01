"""Pytest configuration and fixtures for sim-relay tests."""

import sys
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest


@pytest.fixture
def kernel_command(tmp_path: Path) -> Callable[[str], tuple[str, ...]]:
    """Factory turning a Python snippet into a kernel command.

    The snippet is written to a script in tmp_path and run unbuffered with
    the current interpreter, standing in for the real kernel executable.
    """
    counter = 0

    def make(source: str) -> tuple[str, ...]:
        nonlocal counter
        counter += 1
        script = tmp_path / f"kernel_{counter}.py"
        script.write_text(textwrap.dedent(source))
        return (sys.executable, "-u", str(script))

    return make


# Kernel that emits one of each record kind and exits cleanly
SHORT_KERNEL = """
    import json
    print(json.dumps({"type": "data", "tick": 1, "hr": 72}))
    print(json.dumps({"type": "log_entry", "message": "VitalSigns: Task started."}))
    print("plain text line")
"""

# Kernel that announces itself and then runs until stopped
LONG_KERNEL = """
    import time
    print("ready")
    while True:
        time.sleep(0.05)
"""

# Kernel that ignores SIGTERM
STUBBORN_KERNEL = """
    import signal, time
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
    print("ready")
    while True:
        time.sleep(0.05)
"""


@pytest.fixture
def short_kernel(kernel_command: Callable[[str], tuple[str, ...]]) -> tuple[str, ...]:
    """Command for a kernel that prints three records and exits 0."""
    return kernel_command(SHORT_KERNEL)


@pytest.fixture
def long_kernel(kernel_command: Callable[[str], tuple[str, ...]]) -> tuple[str, ...]:
    """Command for a kernel that prints 'ready' and runs until terminated."""
    return kernel_command(LONG_KERNEL)


@pytest.fixture
def stubborn_kernel(kernel_command: Callable[[str], tuple[str, ...]]) -> tuple[str, ...]:
    """Command for a kernel that ignores SIGTERM."""
    return kernel_command(STUBBORN_KERNEL)
