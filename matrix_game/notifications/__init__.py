"""Player notifications."""
