#!/usr/bin/env python3
"""Create the database tables for the configured DATABASE_URL."""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from appliance_rental import create_app
from appliance_rental.extensions import db

def init_database():
    app = create_app()
    with app.app_context():
        db.create_all()
        print("Database tables initialized")

if __name__ == "__main__":
    init_database()
