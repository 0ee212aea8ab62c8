"""Allow ``python -m authbridge``."""

from authbridge.cli.main import main

main()
