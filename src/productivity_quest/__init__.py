"""Task manager core: gold/XP rewards, skill progression and external task sync."""

__version__ = "0.4.0"
