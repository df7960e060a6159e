#!/usr/bin/env python3
"""
Database Seeding Script
Creates the demonstration workspaces (Project Atlas, Project Beacon)
"""

import sys
from pathlib import Path
from dotenv import load_dotenv

# Add parent directory to path
sys.path.append(str(Path(__file__).parent.parent))

# Load environment variables
env_file = Path(__file__).parent.parent / ".env"
if env_file.exists():
    load_dotenv(env_file)

from loan_engine.database_config import close_db, get_database_info, get_engine, get_session
from loan_engine.demo_data import seed_demo_data
from loan_engine.engine_logging import setup_logging


def run_seed():
    """Run the complete database seeding process"""
    setup_logging()
    print("Starting database seeding...")

    # Creating the engine also ensures the tables exist
    engine = get_engine()
    print(f"Database ready: {get_database_info(engine)}")

    try:
        session = get_session()
        try:
            created = seed_demo_data(session)
        finally:
            session.close()
            close_db()

        if created:
            print(f"Created workspaces: {', '.join(created)}")
        else:
            print("Demonstration workspaces already exist")
        print("Database seeding completed successfully!")

    except Exception as e:
        print(f"Error during seeding: {e}")
        raise


if __name__ == "__main__":
    run_seed()
