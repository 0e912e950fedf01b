"""
Initialize database — creates all tables and seeds runtime config defaults.
Run once before first launch, or after adding new models.
Usage: python scripts/setup/init_db.py [--demo]
"""

import argparse
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from app.database import create_tables, engine, SessionLocal
from app.config import settings
from app.models.system_config import SystemConfig
from app.models.tracker import Tracker
from app.models.zone import Zone
from app.services.config_store import CONFIG_KEYS, set_config
from app.utils.timeutils import utc_now
from sqlalchemy import inspect, text

DEFAULTS = {
    "system_active": settings.SYSTEM_ACTIVE,
    "work_hours_start": settings.WORK_HOURS_START,
    "work_hours_end": settings.WORK_HOURS_END,
    "work_days": settings.WORK_DAYS,
    "timezone": settings.WORK_TIMEZONE,
    "default_radius_m": settings.DEFAULT_RADIUS_M,
    "min_visit_minutes": settings.MIN_VISIT_MINUTES,
    "max_accuracy_m": settings.MAX_ACCURACY_M,
}


def seed_config(db):
    existing = {row.key for row in db.query(SystemConfig).all()}
    for key in CONFIG_KEYS:
        if key not in existing:
            set_config(db, key, DEFAULTS[key], updated_by="init_db")
            print(f"   + {key} = {DEFAULTS[key]}")


def seed_demo(db):
    """One tracker + one zone so simulate_ping.py has something to hit."""
    if not db.query(Tracker).filter(Tracker.tracker_id == "RD01").first():
        db.add(Tracker(tracker_id="RD01", display_name="Demo Supervisor", active=True,
                       created_at=utc_now()))
    if not db.query(Zone).filter(Zone.code == "DEMO-01").first():
        db.add(Zone(code="DEMO-01", name="Demo Branch", latitude=25.6866, longitude=-100.3161,
                    radius_m=100, active=True, group_name="DEMO", updated_at=utc_now()))
    db.commit()
    print("   + tracker RD01, zone DEMO-01 (25.6866, -100.3161, r=100m)")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--demo", action="store_true", help="Also create a demo tracker and zone")
    args = parser.parse_args()

    print("🗄️  Geofence DB Initialization")
    print("=" * 40)
    print(f"📡 Database: {engine.url.render_as_string(hide_password=True)}")

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except Exception as e:
        print(f"❌ Cannot connect to database: {e}")
        print("\nMake sure PostgreSQL is running:")
        print("  docker-compose up -d db")
        print("  # or: sudo systemctl start postgresql")
        sys.exit(1)

    print("\n📋 Creating tables...")
    create_tables()
    tables = sorted(inspect(engine).get_table_names())
    print(f"✅ Tables in database ({len(tables)} total):")
    for t in tables:
        print(f"   ✓ {t}")

    db = SessionLocal()
    try:
        print("\n⚙️  Seeding runtime config...")
        seed_config(db)
        if args.demo:
            print("\n🧪 Seeding demo data...")
            seed_demo(db)
    finally:
        db.close()

    print("\n🎉 Database ready! You can now start the backend:")
    print("   uvicorn app.main:app --host 0.0.0.0 --port 8080 --reload")


if __name__ == "__main__":
    main()
