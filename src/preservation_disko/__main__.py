from preservation_disko.cli import main

raise SystemExit(main())
