"""mypail CLI: Click-based command-line interface."""
