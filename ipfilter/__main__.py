"""CLI entry point: python -m ipfilter"""

from .cli import main

main()
