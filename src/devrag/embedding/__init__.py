"""Query and chunk embedding."""
