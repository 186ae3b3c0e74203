from __future__ import annotations


def format_duration(ms: int) -> str:
    """Render a millisecond duration for header chips and step rows."""
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60000:
        return f"{ms / 1000:.1f}s"
    return f"{ms // 60000}m {(ms % 60000) // 1000}s"
