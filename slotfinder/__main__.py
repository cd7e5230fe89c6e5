import sys

from slotfinder.main import main

sys.exit(main())
