"""Allow ``python -m branchvault``."""

from .cli import main

if __name__ == "__main__":
    main()
