"""Path pattern rules."""
