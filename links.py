from __future__ import annotations

from typing import Optional


def explorer_tx_link(explorer: Optional[str], tx_hash: str) -> Optional[str]:
    if not explorer:
        return None
    return f"{explorer.rstrip('/')}/tx/{tx_hash}"


def ntfy_view_action(url: Optional[str]) -> str:
    # ntfy "Actions" header, one view button that dismisses the notification
    if not url:
        return ""
    return f"view, Explorer, {url}, clear=true"
