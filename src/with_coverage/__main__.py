"""Allow ``python -m with_coverage``."""

from with_coverage.cli import main

main()
