import sys

from swarm_watchdog.cli import main

sys.exit(main())
