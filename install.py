#!/usr/bin/env python3
"""Cross-platform install script for sol-smith.

Usage:
    python install.py          # Production install
    python install.py --dev    # Development install (includes test tools)
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required. "
            f"You have {sys.version_info.major}.{sys.version_info.minor}."
        )

    print(f"Python {sys.version_info.major}.{sys.version_info.minor} detected. OK.")

    dev = "--dev" in sys.argv
    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir = os.path.join(project_dir, ".venv")
    is_windows = platform.system() == "Windows"

    bin_dir = "Scripts" if is_windows else "bin"
    pip = os.path.join(venv_dir, bin_dir, "pip")

    if not os.path.isdir(venv_dir):
        print("Creating virtual environment...")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])
    else:
        print("Virtual environment already exists.")

    print("Upgrading pip...")
    subprocess.check_call([pip, "install", "--upgrade", "pip"])

    target = ".[dev]" if dev else "."
    print(f"Installing sol-smith ({'development' if dev else 'production'})...")
    subprocess.check_call([pip, "install", "-e", target] if dev else [pip, "install", target], cwd=project_dir)

    # Users store and generator scratch space
    for rel in (os.path.join("data", "users"), "keypairs"):
        path = os.path.join(project_dir, rel)
        os.makedirs(path, exist_ok=True)
        print(f"Directory ready: {rel}")

    for src, dst in [("config.example.yaml", "config.yaml"), (".env.example", ".env")]:
        src_path = os.path.join(project_dir, src)
        dst_path = os.path.join(project_dir, dst)
        if not os.path.exists(dst_path) and os.path.exists(src_path):
            shutil.copy(src_path, dst_path)
            print(f"Created {dst} from {src}")
        elif os.path.exists(dst_path):
            print(f"{dst} already exists, skipping.")

    if shutil.which("solana-keygen") is None:
        print()
        print("WARNING: 'solana-keygen' was not found on PATH.")
        print("  Install the Solana CLI: https://docs.solanalabs.com/cli/install")

    activate_cmd = r".\.venv\Scripts\activate" if is_windows else "source .venv/bin/activate"

    print()
    print("=" * 50)
    print("  sol-smith installation complete!")
    print("=" * 50)
    print()
    print("Next steps:")
    print("  1. Edit .env - set TELEGRAM_BOT_TOKEN=...")
    print("  2. Review config.yaml (generator limits, storage paths)")
    print("  3. Activate the virtual environment:")
    print(f"       {activate_cmd}")
    print("  4. Start the bot:")
    print("       python -m solsmith")
    print("  5. Or check config:")
    print("       python -m solsmith config-check")
    print()


if __name__ == "__main__":
    main()
