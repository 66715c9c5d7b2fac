"""Human-readable formatting helpers shared by the engine and the UI."""

from datetime import datetime


def format_bytes(size: int | float | None) -> str:
    """Format bytes as human-readable string."""
    if not size:
        return "0 B"
    if size < 1024:
        return f"{int(size)} B"
    if size < 1024**2:
        return f"{size / 1024:.1f} KB"
    if size < 1024**3:
        return f"{size / 1024**2:.1f} MB"
    return f"{size / 1024**3:.2f} GB"


def format_duration(ms: int | float | None) -> str:
    """Format a millisecond duration using its two largest units."""
    if not ms:
        return "-"
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_cpu_time(ms: int | float | None) -> str:
    """Format thread CPU time."""
    if not ms:
        return "0ms"
    if ms < 1000:
        return f"{int(ms)}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    if ms < 3_600_000:
        return f"{ms / 60_000:.1f}m"
    return f"{ms / 3_600_000:.1f}h"


def format_percent(fraction: float | None) -> str:
    """Format a 0..1 fraction as a percentage with one decimal."""
    return f"{(fraction or 0.0) * 100:.1f}%"


def format_clock(timestamp_ms: int) -> str:
    """Format an epoch-millisecond timestamp as local HH:MM:SS."""
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%H:%M:%S")


def usage_class(usage: float | None) -> str:
    """Classify a 0..1 usage fraction for colouring."""
    if not usage:
        return "normal"
    if usage >= 0.9:
        return "danger"
    if usage >= 0.7:
        return "warning"
    return "normal"
