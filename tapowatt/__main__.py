import sys

from tapowatt.cli import main

sys.exit(main())
