import sys

from snapcrop.cli import main

sys.exit(main())
