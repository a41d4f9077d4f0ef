import sys

from .sync_service import main

sys.exit(main())
