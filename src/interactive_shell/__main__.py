"""interactive-shell entry point.

Supports: python -m interactive_shell
"""

from .app import main

if __name__ == "__main__":
    main()
