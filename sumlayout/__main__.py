from sumlayout.compiler.cli import main

raise SystemExit(main())
