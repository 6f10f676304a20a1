import sys

from corpus5d.cli import main

sys.exit(main())
