import sys

from contribviz.cli import main

sys.exit(main())
