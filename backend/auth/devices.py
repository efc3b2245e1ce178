"""User-agent parsing for the new-device login check."""

from __future__ import annotations

import re
from typing import Optional


def parse_browser(user_agent: Optional[str]) -> str:
    ua = user_agent or ""
    if "Edg" in ua:
        match = re.search(r"Edg\w*/(\d+)", ua)
        return f"Edge {match.group(1)}" if match else "Edge"
    if "Chrome" in ua:
        match = re.search(r"Chrome/(\d+)", ua)
        return f"Chrome {match.group(1)}" if match else "Chrome"
    if "Firefox" in ua:
        match = re.search(r"Firefox/(\d+)", ua)
        return f"Firefox {match.group(1)}" if match else "Firefox"
    if "Safari" in ua:
        match = re.search(r"Version/(\d+)", ua)
        return f"Safari {match.group(1)}" if match else "Safari"
    return "Unknown Browser"


def parse_os(user_agent: Optional[str]) -> str:
    ua = user_agent or ""
    # mobile first: Android UAs also say "Linux", iOS UAs also say "Mac OS X"
    if "Android" in ua:
        match = re.search(r"Android (\d+)", ua)
        return f"Android {match.group(1)}" if match else "Android"
    if "iPhone" in ua or "iPad" in ua:
        match = re.search(r"OS (\d+)", ua)
        return f"iOS {match.group(1)}" if match else "iOS"
    if "Windows NT 10" in ua:
        return "Windows 10/11"
    if "Windows" in ua:
        return "Windows"
    if "Mac OS X" in ua:
        match = re.search(r"Mac OS X (\d+[._]\d+)", ua)
        return f"macOS {match.group(1).replace('_', '.')}" if match else "macOS"
    if "Linux" in ua:
        return "Linux"
    return "Unknown OS"


def device_fingerprint(user_agent: Optional[str]) -> str:
    """``"<OS> - <Browser>"``, e.g. ``"Windows 10/11 - Chrome 120"``."""
    return f"{parse_os(user_agent)} - {parse_browser(user_agent)}"


def device_name(user_agent: Optional[str]) -> str:
    return f"{parse_browser(user_agent)} on {parse_os(user_agent)}"
