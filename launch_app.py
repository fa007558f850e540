from __future__ import annotations

import argparse
import hashlib
import os
import subprocess
import sys
import venv
from pathlib import Path
from typing import List, Optional


PROJECT_ROOT = Path(__file__).resolve().parent
APP_DIR = PROJECT_ROOT / "app"
VENV_DIR = PROJECT_ROOT / ".venv"
REQUIREMENTS_FILE = APP_DIR / "requirements.txt"
REQUIREMENTS_MARKER = VENV_DIR / ".requirements.applied"
ASGI_APP = "api:app"


def venv_python() -> Path:
    scripts = "Scripts" if os.name == "nt" else "bin"
    return VENV_DIR / scripts / ("python.exe" if os.name == "nt" else "python")


def prepare_environment() -> Path:
    """Create ``.venv`` on first use and reinstall requirements whenever they change."""
    python_exec = venv_python()
    if not python_exec.exists():
        print(f"[launcher] Creating virtual environment at {VENV_DIR}...")
        venv.create(VENV_DIR, with_pip=True)

    signature = hashlib.sha256(REQUIREMENTS_FILE.read_bytes()).hexdigest()
    if REQUIREMENTS_MARKER.exists() and REQUIREMENTS_MARKER.read_text().strip() == signature:
        return python_exec

    print(f"[launcher] Installing {REQUIREMENTS_FILE.relative_to(PROJECT_ROOT)}...")
    subprocess.check_call([str(python_exec), "-m", "pip", "install", "-r", str(REQUIREMENTS_FILE)])
    REQUIREMENTS_MARKER.write_text(signature)
    return python_exec


def uvicorn_command(python_exec: Path, args: argparse.Namespace) -> List[str]:
    command = [
        str(python_exec), "-m", "uvicorn", ASGI_APP,
        "--app-dir", str(APP_DIR),
        "--host", args.host,
        "--port", str(args.port),
    ]
    if args.reload:
        command += ["--reload", "--reload-dir", str(APP_DIR)]
    return command


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the shift board API from a local virtualenv.")
    parser.add_argument("--host", default=os.environ.get("SHIFTBOARD_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("SHIFTBOARD_PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="restart when files under app/ change")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    python_exec = prepare_environment()
    print(f"[launcher] Serving {ASGI_APP} on http://{args.host}:{args.port}")
    return subprocess.call(uvicorn_command(python_exec, args))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except subprocess.CalledProcessError as exc:
        print(f"[launcher] Command failed with exit code {exc.returncode}", file=sys.stderr)
        sys.exit(exc.returncode)
    except OSError as exc:
        print(f"[launcher] {exc}", file=sys.stderr)
        sys.exit(1)
