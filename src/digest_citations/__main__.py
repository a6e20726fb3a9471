import sys

from digest_citations.cli import main

sys.exit(main())
