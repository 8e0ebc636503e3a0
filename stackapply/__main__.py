from stackapply.cli import main

raise SystemExit(main())
