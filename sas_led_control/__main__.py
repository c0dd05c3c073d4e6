import sys

from .led_control import main

sys.exit(main())
