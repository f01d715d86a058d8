"""Packaged JSON schemas for pear-reviewer output."""
