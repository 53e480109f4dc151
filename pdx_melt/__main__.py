"""Package entry point for ``python -m pdx_melt``.

Delegates to the CLI's main() and exits with its return code.
"""

import sys

from pdx_melt.cli import main

if __name__ == "__main__":
    sys.exit(main())
