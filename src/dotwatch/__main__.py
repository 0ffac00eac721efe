import sys

from dotwatch.cli import main

sys.exit(main())
