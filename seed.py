"""
Dev data loader

    python seed.py --import   load dev-data/*.json into the database
    python seed.py --delete   remove every tour, user and review
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from bson import ObjectId

import database
from models import Review, Tour, User

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "dev-data"
MODELS = (Tour, User, Review)


def read_json(name: str):
    with open(DATA_DIR / name, encoding="utf-8") as f:
        return json.load(f)


def _with_object_id(doc):
    doc = dict(doc)
    if doc.get("_id"):
        doc["_id"] = ObjectId(doc["_id"])
    return doc


def import_data() -> None:
    database.ensure_indexes()
    # users first so tour guides and review authors resolve
    for doc in read_json("users.json"):
        User.create(_with_object_id(doc), validate=False)
    for doc in read_json("tours.json"):
        data = Tour.schema.model_validate(doc).model_dump(exclude_none=True)
        data["_id"] = ObjectId(doc["_id"])
        Tour.create(data, validate=False)
    for doc in read_json("reviews.json"):
        Review.create(doc)
    logger.info("Data successfully loaded!")


def delete_data() -> None:
    for model in MODELS:
        result = model.collection().delete_many({})
        logger.info("Deleted %d documents from %s", result.deleted_count, model.collection_name)
    logger.info("Data successfully deleted!")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Load or remove Natours dev data")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--import", dest="import_", action="store_true", help="load dev-data into the database")
    group.add_argument("--delete", action="store_true", help="delete all tours, users and reviews")
    args = parser.parse_args(argv)

    if args.import_:
        import_data()
    else:
        delete_data()
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    sys.exit(main())
