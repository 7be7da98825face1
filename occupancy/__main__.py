import sys

from occupancy.cli import main

sys.exit(main())
