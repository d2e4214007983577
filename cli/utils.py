"""Utility functions for CLI output."""


def format_kb(size_kb: float) -> str:
    """
    Format a size in protocol KB (1000 bytes) for display.

    Args:
        size_kb: Size in KB

    Returns:
        Formatted string (e.g., "64.0 KB", "1.25 MB")
    """
    if size_kb < 1000:
        return f"{size_kb:.1f} KB"
    return f"{size_kb / 1000:.2f} MB"


def short_id(content_id: str, length: int = 12) -> str:
    """Abbreviate a content ID for display."""
    if len(content_id) <= length:
        return content_id
    return f"{content_id[:length]}..."
