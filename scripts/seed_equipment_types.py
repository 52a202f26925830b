"""
Seed the default equipment types for every company (or one company).

Usage:
  python scripts/seed_equipment_types.py [company_id]

This script is idempotent: types that already exist for a company are left alone.
"""

import sys
import os
import uuid

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
from dotenv import load_dotenv
load_dotenv()

from equiptrack.db import SessionLocal
from equiptrack.models.models import Company
from equiptrack.services.tenancy import seed_default_equipment_types


def seed_equipment_types(company_id=None):
    """Seed default equipment types for the selected companies"""
    db = SessionLocal()
    try:
        query = db.query(Company)
        if company_id:
            query = query.filter(Company.id == uuid.UUID(company_id))
        companies = query.order_by(Company.name.asc()).all()
        if not companies:
            print("No companies found")
            return

        for company in companies:
            created = seed_default_equipment_types(db, company)
            if created:
                print(f"{company.name}: created {', '.join(t.name for t in created)}")
            else:
                print(f"{company.name}: already up to date")
        db.commit()
        print("Equipment types seeded successfully")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_equipment_types(sys.argv[1] if len(sys.argv) > 1 else None)
