"""Integrity assessment computed once, when an attempt is finalized."""

from __future__ import annotations

from typing import Any

from attempt_service.config import settings


def build_integrity_report(
    session: dict[str, Any] | None,
    disconnections: int,
    offline_time: int,
    session_available: bool = True,
) -> dict[str, Any]:
    """Summarise browser activity counters into flags and notes.

    Disconnections and offline time come from the durable attempt; the rest
    from the realtime session, which may be missing.
    """
    session = session or {}
    tab_switches = int(session.get("tab_switch_count") or 0)
    copy_paste = int(session.get("copy_paste_attempts") or 0)
    right_clicks = int(session.get("right_click_attempts") or 0)
    shortcuts = list(session.get("keyboard_shortcuts") or [])
    was_fullscreen = bool(session.get("is_fullscreen", True))

    suspicious: list[str] = []
    if tab_switches > settings.INTEGRITY_TAB_SWITCH_WARN:
        suspicious.append(f"Excessive tab switching ({tab_switches} times)")
    if copy_paste > 0:
        suspicious.append(f"Copy/paste attempts detected ({copy_paste} times)")
    if right_clicks > settings.INTEGRITY_RIGHT_CLICK_WARN:
        suspicious.append(f"Excessive right-clicking ({right_clicks} times)")
    if shortcuts:
        suspicious.append(f"Suspicious keyboard shortcuts used ({len(shortcuts)} times)")

    is_compromised = (
        tab_switches > settings.INTEGRITY_TAB_SWITCH_COMPROMISED
        or copy_paste > settings.INTEGRITY_COPY_PASTE_COMPROMISED
        or disconnections > settings.INTEGRITY_DISCONNECT_COMPROMISED
    )

    notes: list[str] = []
    if tab_switches > settings.INTEGRITY_TAB_SWITCH_WARN:
        notes.append("Student switched tabs frequently")
    if disconnections > settings.INTEGRITY_DISCONNECT_WARN:
        notes.append("Student experienced multiple disconnections")
    if not was_fullscreen:
        notes.append("Student was not in fullscreen mode")
    if not session_available:
        notes.append("Live session data was unavailable at submission; counters may be incomplete")

    return {
        "tab_switches": tab_switches,
        "copy_paste_attempts": copy_paste,
        "right_click_attempts": right_clicks,
        "keyboard_shortcuts": shortcuts,
        "disconnections": disconnections,
        "offline_time": offline_time,
        "was_fullscreen": was_fullscreen,
        "suspicious_activities": suspicious,
        "is_compromised": is_compromised,
        "notes": notes,
        "session_data_available": session_available,
    }
