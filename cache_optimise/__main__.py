import sys

from cache_optimise.cli import main

sys.exit(main())
