"""Allow ``python -m avatar_knowledge.cli`` execution."""

import sys

from avatar_knowledge.cli.knowledge import main

sys.exit(main())
