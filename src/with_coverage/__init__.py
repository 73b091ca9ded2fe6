"""with_coverage — run a command under Rust source-based coverage and report it."""

__version__ = "0.1.0"
