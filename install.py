#!/usr/bin/env python3
"""
Installation script for the Differential Expression Pipeline.
Supports both uv and pip as dependency managers.
"""

import subprocess
import sys


def check_uv_installed():
    """Check if uv is installed."""
    try:
        subprocess.run(["uv", "--version"], capture_output=True, check=True)
        return True
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False


def install_command(prefix, dev=False):
    """Build the editable install command, with test dependencies if requested."""
    target = ".[dev]" if dev else "."
    return prefix + ["install", "-e", target]


def main():
    """Main installation function."""
    dev = "--dev" in sys.argv
    use_uv = "--uv" in sys.argv
    use_pip = "--pip" in sys.argv

    if use_uv and use_pip:
        print("Error: Cannot use both --uv and --pip flags")
        sys.exit(1)

    if use_uv or (not use_pip and check_uv_installed()):
        print("Installing with uv...")
        cmd = install_command(["uv", "pip"], dev)
    else:
        print("Installing with pip...")
        cmd = install_command([sys.executable, "-m", "pip"], dev)

    subprocess.run(cmd, check=True)


if __name__ == "__main__":
    main()
