"""Double-approval compliance analysis engine."""
