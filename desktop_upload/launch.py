"""Desktop upload launcher.

Starts gunicorn serving the upload API on localhost. The active-upload registry
and the background reconciler live in process memory, so the server always
runs a single worker process (with threads for concurrent requests).
"""

import os
import signal
import socket
import subprocess
import sys
import time
import urllib.request

PORT = int(os.environ.get("DESKTOP_UPLOAD_PORT", "5055"))
HEALTH_URL = f"http://127.0.0.1:{PORT}/api/upload/active"

gunicorn_proc: subprocess.Popen | None = None


def log(msg: str) -> None:
    print(f"[desktop-upload] {msg}", flush=True)


def port_in_use(port: int) -> bool:
    """Check if a port is already in use."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex(("127.0.0.1", port)) == 0


def wait_for_server(timeout: int = 15) -> bool:
    """Poll the health URL until the server responds or timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            urllib.request.urlopen(HEALTH_URL, timeout=1)
            return True
        except OSError:
            pass
        if gunicorn_proc and gunicorn_proc.poll() is not None:
            return False
        time.sleep(0.5)
    return False


def shutdown(_signum: int = 0, _frame: object = None) -> None:
    """Gracefully stop gunicorn."""
    log("Shutting down...")
    if gunicorn_proc and gunicorn_proc.poll() is None:
        gunicorn_proc.terminate()
        try:
            gunicorn_proc.wait(timeout=10)
        except subprocess.TimeoutExpired:
            gunicorn_proc.kill()
    log("Stopped.")
    sys.exit(0)


def build_command(port: int = PORT) -> list[str]:
    """gunicorn command line for the single-process server."""
    return [
        sys.executable,
        "-m",
        "gunicorn",
        "--bind",
        f"127.0.0.1:{port}",
        "--workers",
        "1",
        "--threads",
        "8",
        "--timeout",
        "300",
        "--access-logfile",
        "-",
        "--error-logfile",
        "-",
        "desktop_upload:create_app()",
    ]


def main() -> None:
    global gunicorn_proc

    if port_in_use(PORT):
        log(f"Port {PORT} is already in use; is desktop-upload already running?")
        sys.exit(1)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    log(f"Starting desktop-upload (gunicorn on port {PORT})...")
    gunicorn_proc = subprocess.Popen(build_command(PORT))

    if not wait_for_server():
        log("Server did not start. Check output above.")
        shutdown()

    log(f"Upload API is running at http://127.0.0.1:{PORT}")
    log("Press Ctrl+C to stop the server.")

    try:
        gunicorn_proc.wait()
    except KeyboardInterrupt:
        shutdown()


if __name__ == "__main__":
    main()
