"""Allow ``python -m tonpocket``."""

import sys

from tonpocket.main import main

sys.exit(main())
