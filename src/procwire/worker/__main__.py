"""``python -m procwire.worker`` — worker process entry."""

from procwire.worker.runtime import main

raise SystemExit(main())
