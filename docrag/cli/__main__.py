"""Allow ``python -m docrag.cli`` execution."""

import sys

from docrag.cli.ingest import main

sys.exit(main())
