#!/usr/bin/env python3
"""
Backfill monthly invoices for a range of months.

Usage:
    python scripts/backfill_monthly_invoices.py --from=2025-01 --to=2025-03 --dryRun --force
    python scripts/backfill_monthly_invoices.py --from=2025-01 --to=2025-03 --branchId=2 --force
"""

import sys
from pathlib import Path

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from school_billing.modules.invoices.backfill import main

if __name__ == "__main__":
    sys.exit(main())
