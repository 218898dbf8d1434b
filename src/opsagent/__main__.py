from opsagent.cli import main

raise SystemExit(main())
