"""WebDriver server detection and launch utilities."""

import asyncio
import shutil
import subprocess
import sys
from pathlib import Path

from bidilog.core.exceptions import DriverNotFoundError

DEFAULT_DRIVER_PORT = 4444

DRIVER_BINARIES = {
    "firefox": ["geckodriver"],
    "chrome": ["chromedriver"],
}

WINDOWS_DRIVER_PATHS = {
    "firefox": [r"C:\Program Files\geckodriver\geckodriver.exe"],
    "chrome": [r"C:\Program Files\chromedriver\chromedriver.exe"],
}


def find_driver(browser: str = "firefox") -> str:
    """Find the WebDriver executable for ``browser``."""
    if browser not in DRIVER_BINARIES:
        raise DriverNotFoundError(f"Unsupported browser '{browser}'. Use one of: {', '.join(DRIVER_BINARIES)}")

    for name in DRIVER_BINARIES[browser]:
        path = shutil.which(name)
        if path:
            return path

    if sys.platform == "win32":
        for path in WINDOWS_DRIVER_PATHS.get(browser, []):
            if Path(path).exists():
                return path

    raise DriverNotFoundError(
        f"{DRIVER_BINARIES[browser][0]} not found. Install it and make sure it is on PATH."
    )


def get_driver_version(driver_path: str) -> str | None:
    """Get the version line printed by the driver binary."""
    try:
        result = subprocess.run(
            [driver_path, "--version"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode == 0 and result.stdout:
        return result.stdout.strip().splitlines()[0]
    return None


def build_driver_args(
    browser: str = "firefox",
    *,
    port: int = DEFAULT_DRIVER_PORT,
    host: str = "127.0.0.1",
    verbose: bool = False,
) -> list[str]:
    """Build command-line arguments for geckodriver or chromedriver."""
    if browser == "chrome":
        args = [f"--port={port}", f"--allowed-ips={host}"]
        if verbose:
            args.append("--verbose")
        return args

    args = ["--port", str(port), "--host", host]
    if verbose:
        args.append("-vv")
    return args


def driver_url(port: int = DEFAULT_DRIVER_PORT, host: str = "127.0.0.1") -> str:
    return f"http://{host}:{port}"


def find_driver_processes(port: int = DEFAULT_DRIVER_PORT) -> list[int]:
    """Find PIDs of driver processes listening on ``port``."""
    pids: list[int] = []
    # pgrep patterns are extended regexes; the port must end the argument.
    for pattern in (f"driver.*--port {port}( |$)", f"driver.*--port={port}( |$)"):
        try:
            result = subprocess.run(
                ["pgrep", "-f", pattern],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError:
            return pids
        if result.returncode == 0:
            for line in result.stdout.strip().split("\n"):
                if line and int(line) not in pids:
                    pids.append(int(line))
    return pids


def kill_driver(port: int = DEFAULT_DRIVER_PORT) -> int:
    """Kill driver processes using ``port``. Returns count killed."""
    killed = 0
    for pid in find_driver_processes(port):
        try:
            subprocess.run(["kill", "-9", str(pid)], check=False)
            killed += 1
        except OSError:
            pass
    return killed


async def launch_driver(
    *,
    browser: str = "firefox",
    driver_path: str | None = None,
    port: int = DEFAULT_DRIVER_PORT,
    verbose: bool = False,
    wait_for_ready: bool = True,
    kill_existing: bool = False,
) -> subprocess.Popen[bytes]:
    """Launch geckodriver or chromedriver.

    Returns the subprocess.Popen object for the driver process.
    """
    from bidilog.core.webdriver import check_driver_status

    url = driver_url(port)
    if await check_driver_status(url):
        if kill_existing:
            kill_driver(port)
            await asyncio.sleep(0.5)
        else:
            raise DriverNotFoundError(
                f"A WebDriver server is already running on port {port}. "
                "Use --kill-existing to replace it, or use a different --port."
            )

    path = driver_path if driver_path else find_driver(browser)
    args = build_driver_args(browser, port=port, verbose=verbose)

    process = subprocess.Popen(
        [path, *args],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )

    if wait_for_ready:
        for _ in range(100):
            await asyncio.sleep(0.1)
            if process.poll() is not None:
                raise DriverNotFoundError(f"{Path(path).name} exited immediately (code {process.returncode}).")
            if await check_driver_status(url):
                break
        else:
            process.terminate()
            raise DriverNotFoundError(
                f"Driver started but {url}/status not ready after 10 seconds. "
                "Try: bidilog driver launch --kill-existing"
            )

    return process
