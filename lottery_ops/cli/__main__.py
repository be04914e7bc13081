from lottery_ops.cli.main import main

raise SystemExit(main())
