from stocktracker.cli import main

raise SystemExit(main())
