import sys

from compound_stake.agent.runtime import main

sys.exit(main())
