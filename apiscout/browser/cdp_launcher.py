"""
CDP Launcher - Chrome DevTools Protocol browser initialization
v2.0 - Profile/startup defaults come from config; CDP probe runs off the event loop

This module handles Chrome initialization when discovery should attach to a
real, visible Chrome instead of a Playwright-launched Chromium:
- Detects if Chrome is already running with CDP on the specified port
- Launches a new Chrome instance with CDP if needed
- Uses a separate profile directory to avoid conflicts with existing Chrome sessions
"""

import asyncio
import json
import logging
import platform
import subprocess
import urllib.error
import urllib.request
from pathlib import Path
from typing import Tuple
from urllib.parse import urlparse

from apiscout.config import DEFAULT_CDP_PORT, PROFILE_DIR

logger = logging.getLogger(__name__)

CDP_CHECK_TIMEOUT = 2.0
CDP_STARTUP_ATTEMPTS = 60
CDP_STARTUP_POLL = 0.3


def get_chrome_path() -> str:
    """
    Get the Chrome executable path based on the operating system.

    Returns:
        str: Path to Chrome executable

    Raises:
        RuntimeError: If Chrome is not found
    """
    system = platform.system()

    if system == "Darwin":  # macOS
        paths = [
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Chromium.app/Contents/MacOS/Chromium",
        ]
    elif system == "Linux":
        paths = [
            "/usr/bin/google-chrome",
            "/usr/bin/google-chrome-stable",
            "/usr/bin/chromium",
            "/usr/bin/chromium-browser",
        ]
    elif system == "Windows":
        paths = [
            r"C:\Program Files\Google\Chrome\Application\chrome.exe",
            r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
        ]
    else:
        raise RuntimeError(f"Unsupported operating system: {system}")

    for path in paths:
        if Path(path).exists():
            return path

    raise RuntimeError(f"Chrome not found. Checked paths: {paths}")


def get_cdp_url(port: int = DEFAULT_CDP_PORT) -> str:
    return f"http://localhost:{port}"


def port_from_cdp_url(cdp_url: str, default: int = DEFAULT_CDP_PORT) -> int:
    """Extract the port from "http://host:port"; falls back to *default*."""
    try:
        return urlparse(cdp_url).port or default
    except ValueError:
        return default


def _probe_cdp(port: int) -> dict:
    url = f"http://localhost:{port}/json/version"
    req = urllib.request.Request(url, method='GET')
    with urllib.request.urlopen(req, timeout=CDP_CHECK_TIMEOUT) as response:
        return json.loads(response.read().decode())


async def check_cdp_available(port: int = DEFAULT_CDP_PORT) -> bool:
    """
    Check if Chrome CDP is available on the specified port.

    Returns:
        bool: True if /json/version answered
    """
    try:
        data = await asyncio.to_thread(_probe_cdp, port)
    except (urllib.error.URLError, OSError, ValueError) as e:
        logger.debug(f"CDP not available on port {port}: {e}")
        return False
    logger.info(f"CDP available on port {port}: {data.get('Browser', 'Unknown')}")
    return True


async def launch_chrome_with_cdp(
    port: int = DEFAULT_CDP_PORT,
    profile_dir: str = PROFILE_DIR,
    startup_url: str = "about:blank"
) -> bool:
    """
    Launch Chrome with CDP enabled.

    Args:
        port: CDP port number
        profile_dir: Chrome profile directory (kept between runs so logins persist)
        startup_url: Initial URL to load

    Returns:
        bool: True if CDP answered after launch

    Raises:
        RuntimeError: If Chrome cannot be launched
    """
    chrome_path = get_chrome_path()
    Path(profile_dir).mkdir(parents=True, exist_ok=True)

    args = [
        chrome_path,
        f"--remote-debugging-port={port}",
        f"--user-data-dir={profile_dir}",
        "--no-first-run",
        "--no-default-browser-check",
        startup_url
    ]

    logger.info(f"Launching Chrome with CDP on port {port}...")
    logger.debug(f"Chrome command: {' '.join(args)}")

    try:
        subprocess.Popen(
            args,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True
        )
    except OSError as e:
        raise RuntimeError(f"Failed to launch Chrome: {e}")

    for _ in range(CDP_STARTUP_ATTEMPTS):
        await asyncio.sleep(CDP_STARTUP_POLL)
        if await check_cdp_available(port):
            logger.info(f"Chrome CDP ready on port {port}")
            return True

    logger.error(f"Chrome started but CDP not responding after {CDP_STARTUP_ATTEMPTS * CDP_STARTUP_POLL:.0f}s")
    return False


async def ensure_cdp_available(
    port: int = DEFAULT_CDP_PORT,
    profile_dir: str = PROFILE_DIR,
    startup_url: str = "about:blank"
) -> Tuple[bool, bool]:
    """
    Ensure Chrome CDP is available, launching Chrome if necessary.

    Returns:
        Tuple[bool, bool]: (success, was_launched)
    """
    if await check_cdp_available(port):
        logger.info(f"Reusing existing Chrome CDP on port {port}")
        return (True, False)

    logger.info(f"Chrome CDP not found on port {port}, launching new instance...")
    success = await launch_chrome_with_cdp(port, profile_dir, startup_url)
    return (success, True)
