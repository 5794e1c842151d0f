from adversarial_review.cli import main

raise SystemExit(main())
