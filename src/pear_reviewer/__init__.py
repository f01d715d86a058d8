"""pear-reviewer - double approval audit for sensitive repository paths."""

__version__ = "0.3.0"
