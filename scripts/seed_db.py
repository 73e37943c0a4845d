"""
Seed script for police stations and staff accounts in Firestore.

Usage:
  - Dry run (default): python scripts/seed_db.py
  - Apply to Firestore: python scripts/seed_db.py --apply
  - Other seed file:    python scripts/seed_db.py --file ./my_seed.json --apply

Seed file layout:
  {
    "police_stations": [{"name": ..., "city": ..., "location": {"coordinates": [lon, lat]}}, ...],
    "users": {"<uid>": {"name": ..., "email": ..., "roles": [...], "station": "<station name>"}, ...}
  }

Stations are validated with StationCreate and written through StationService,
so ids are generated; staff users reference their station by name and get the
generated id as `police_station`. Role claims for the Firebase Auth account
still have to be set separately.
"""

import argparse
import json
import os
import sys
from typing import Dict

from pydantic import ValidationError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agapay.config.firebase import get_db  # noqa: E402
from agapay.models.station import StationCreate  # noqa: E402
from agapay.services.station_service import StationService  # noqa: E402


def load_seed(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def seed_stations(service: StationService, stations: list, apply: bool) -> Dict[str, str]:
    """Returns station name -> id for the stations written."""
    ids = {}
    for raw in stations:
        try:
            payload = StationCreate.model_validate(raw)
        except ValidationError as e:
            print(f"Skipping invalid station {raw.get('name')!r}: {e.errors()}")
            continue
        print(f"Preparing: police_stations/{payload.name} ({payload.city})")
        if not apply:
            continue
        station = service.create_station(payload)
        ids[payload.name] = station["id"]
        print(f"Wrote: police_stations/{station['id']}")
    return ids


def seed_users(db, users: dict, station_ids: Dict[str, str], apply: bool) -> None:
    for uid, data in users.items():
        data = dict(data)
        station_name = data.pop("station", None)
        if station_name:
            data["police_station"] = station_ids.get(station_name)
        print(f"Preparing: users/{uid} roles={data.get('roles')}")
        if not apply:
            continue
        if station_name and not data["police_station"]:
            print(f"Skipping users/{uid}: station {station_name!r} was not created")
            continue
        db.collection("users").document(uid).set(data)
        print(f"Wrote: users/{uid}")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--apply", action="store_true", help="Write seed to Firestore instead of dry-run")
    parser.add_argument("--file", default=os.path.join(os.getcwd(), "db_seed.json"), help="Seed JSON file")
    args = parser.parse_args()

    if not os.path.exists(args.file):
        print(f"Seed file not found: {args.file}")
        return

    seed = load_seed(args.file)
    db = get_db() if args.apply else None
    service = StationService(db=db) if args.apply else None

    station_ids = seed_stations(service, seed.get("police_stations", []), apply=args.apply)
    seed_users(db, seed.get("users", {}), station_ids, apply=args.apply)

    if args.apply:
        print("Seeding completed.")
    else:
        print("Dry run complete. Re-run with --apply to write to Firestore.")


if __name__ == "__main__":
    main()
