"""Allow ``python -m roulette``."""

from .cli import main

main()
