"""Text formatting helpers for the livetop display."""


def format_bytes(size: int, precision: int = 1) -> str:
    """Format a byte count the way top does: K below 1M, then M, then G."""
    kib = size / 1024
    if kib < 1024:
        return f"{int(kib)}K"
    if kib < 1024 * 1024:
        return f"{kib / 1024:.{precision}f}M"
    return f"{kib / (1024 * 1024):.{precision}f}G"


def format_elapsed(seconds: float) -> str:
    """Format CPU time: 'MM:SS.cc' below an hour, 'HHh:MM:SS' above."""
    whole = int(seconds)
    if whole >= 3600:
        hours = whole // 3600
        minutes = (whole % 3600) // 60
        return f"{hours:02d}h:{minutes:02d}:{whole % 60:02d}"
    hundredths = int((seconds - whole) * 100)
    return f"{whole // 60:02d}:{whole % 60:02d}.{hundredths:02d}"


def format_uptime(seconds: float) -> str:
    """Format uptime as 'HH:MM:SS', prefixed with the day count when non-zero."""
    whole = int(seconds)
    days = whole // 86400
    hours = (whole % 86400) // 3600
    minutes = (whole % 3600) // 60
    clock = f"{hours:02d}:{minutes:02d}:{whole % 60:02d}"
    if days > 0:
        return f"{days} day{'s' if days > 1 else ''}, {clock}"
    return clock
