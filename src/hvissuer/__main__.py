"""Allow ``python -m hvissuer``."""

from hvissuer.cli.main import main

main()
