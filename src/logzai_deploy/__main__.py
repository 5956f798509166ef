"""Entry point for ``python -m logzai_deploy``."""

import sys

from logzai_deploy.cli import main

if __name__ == "__main__":
    sys.exit(main())
