"""
Build script for a portable pst2pdf executable

Usage:
    python build_exe.py

Output:
    dist/pst2pdf(.exe)   (single file, no Python installation needed)

Place a readpst binary at bin/readpst (bin/readpst.exe on Windows) before
building to ship it inside the executable; pst2pdf prefers that copy over
one found on PATH.

Requirements:
    pip install pyinstaller>=6.0
"""

import os
import shutil
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).parent
ENTRY = ROOT / "pst2pdf.py"
READPST = ROOT / "bin" / ("readpst.exe" if os.name == "nt" else "readpst")
APP_NAME = "pst2pdf"


def cleanup_build_dirs():
    """Safely remove build and dist directories to prevent PyInstaller cleanup errors."""
    for dirname in ["build", "dist"]:
        dirpath = ROOT / dirname
        if dirpath.exists():
            try:
                print(f"Cleaning {dirname}/ directory...")
                shutil.rmtree(dirpath)
            except PermissionError:
                print(f"  WARNING: Could not fully remove {dirname}/ (may be locked)")
            # Give the OS a moment to release file locks
            time.sleep(0.5)


def build_command():
    cmd = [
        sys.executable, "-m", "PyInstaller",
        "--onefile",
        "--console",
        "--clean",
        f"--name={APP_NAME}",
        # Hidden imports needed because PyInstaller can't always detect these
        "--hidden-import=pypdf",
        "--hidden-import=dateutil",
        "--hidden-import=dateutil.parser",
        "--hidden-import=bs4",
        "--hidden-import=lxml",
        "--collect-all=reportlab",
        str(ENTRY),
    ]
    if READPST.exists():
        cmd.insert(cmd.index("--clean"), f"--add-binary={READPST}{os.pathsep}bin")
    else:
        print(f"INFO: No readpst found at {READPST}; the executable will rely on PATH or -R.")
    return cmd


def main():
    if not ENTRY.exists():
        print(f"ERROR: Entry point not found: {ENTRY}")
        sys.exit(1)

    try:
        import PyInstaller  # noqa: F401
    except ImportError:
        print("PyInstaller not found. Installing...")
        subprocess.check_call([sys.executable, "-m", "pip", "install", "pyinstaller>=6.0"])

    cleanup_build_dirs()
    cmd = build_command()

    print("\n" + "=" * 60)
    print(f"Building {APP_NAME} ...")
    print("=" * 60)
    print(" ".join(str(c) for c in cmd))
    print()

    result = subprocess.run(cmd, cwd=ROOT)

    if result.returncode != 0:
        print("\nERROR: PyInstaller build failed (see output above).")
        sys.exit(result.returncode)

    exe_path = ROOT / "dist" / (f"{APP_NAME}.exe" if os.name == "nt" else APP_NAME)
    print("\n" + "=" * 60)
    if exe_path.exists():
        size_mb = exe_path.stat().st_size / (1024 * 1024)
        print(f"SUCCESS: {exe_path}  ({size_mb:.1f} MB)")
    else:
        print(f"WARNING: Build finished but {exe_path} not found. Check PyInstaller output.")
    print("=" * 60)


if __name__ == "__main__":
    main()
