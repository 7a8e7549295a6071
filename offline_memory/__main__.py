"""
Entry point for python -m offline_memory
"""
import sys

from offline_memory.cli import main

if __name__ == '__main__':
    sys.exit(main())
