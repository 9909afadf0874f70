#!/usr/bin/env python3
"""Cross-platform install script for zapgpt.

Usage:
    python install.py          # Production install
    python install.py --dev    # Development install (includes pytest)
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

    target = "-e .[dev]" if dev else "."
    print(f"Installing zapgpt ({'development' if dev else 'production'})...")
    subprocess.check_call([pip, "install", *target.split()], cwd=project_dir)

    # SQLite database lives here
    os.makedirs(os.path.join(project_dir, "data"), exist_ok=True)

    for src, dst in [("config.example.yaml", "config.yaml"), (".env.example", ".env")]:
        src_path = os.path.join(project_dir, src)
        dst_path = os.path.join(project_dir, dst)
        if not os.path.exists(dst_path) and os.path.exists(src_path):
            shutil.copy(src_path, dst_path)
            print(f"Created {dst} from {src}")
        elif os.path.exists(dst_path):
            print(f"{dst} already exists, skipping.")

    activate_cmd = r".\.venv\Scripts\activate" if is_windows else "source .venv/bin/activate"

    print()
    print("=" * 50)
    print("  zapgpt installation complete!")
    print("=" * 50)
    print()
    print("Next steps:")
    print("  1. Run a WPPConnect server (https://github.com/wppconnect-team/wppconnect-server)")
    print("  2. Edit .env - set WPPCONNECT_URL and WPPCONNECT_SECRET")
    print("  3. Edit config.yaml - point whatsapp.webhook_url at this host")
    print("  4. Activate the virtual environment:")
    print(f"       {activate_cmd}")
    print("  5. Check config, then start the server:")
    print("       python -m zapgpt config-check")
    print("       python -m zapgpt start")
    print()


if __name__ == "__main__":
    main()
