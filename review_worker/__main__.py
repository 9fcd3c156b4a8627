import sys

from review_worker.main import main

sys.exit(main())
