import sys

from data_acquisition.cli import main


sys.exit(main())
