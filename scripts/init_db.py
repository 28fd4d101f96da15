#!/usr/bin/env python3
"""
MongoDB Database Initialization Script for NaviStream.

Creates the ``videos`` and ``orphaned_assets`` collections with JSON schema
validation and the indexes the backend relies on. Safe to run repeatedly:
existing collections get their validation rules updated and existing indexes
are skipped.

Usage:
    python scripts/init_db.py [--drop] [--verbose]

Environment Variables:
    MONGODB_URI         MongoDB connection URI (default: mongodb://localhost:27017)
    MONGODB_DB_NAME     Database name (default: navistream)
"""

import argparse
import os
import sys
import time

from datetime import UTC, datetime
from typing import Any

from dotenv import load_dotenv
from pymongo import IndexModel, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import CollectionInvalid, ConnectionFailure, OperationFailure, PyMongoError

from app.core.database import COLLECTION_INDEXES, ORPHANED_ASSETS_COLLECTION, VIDEOS_COLLECTION


DEFAULT_MONGODB_URI = "mongodb://localhost:27017"
DEFAULT_DATABASE_NAME = "navistream"
CONNECTION_TIMEOUT_MS = 5000
CONNECT_MAX_ATTEMPTS = 3

VIDEOS = VIDEOS_COLLECTION
ORPHANED_ASSETS = ORPHANED_ASSETS_COLLECTION

CATEGORIES = ["gaming", "music", "education", "entertainment", "sports", "other"]

VIDEOS_VALIDATOR: dict[str, Any] = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": ["title", "url", "thumbnail_url", "public_id", "owner_id", "views", "created_at"],
        "properties": {
            "title": {"bsonType": "string", "minLength": 1, "maxLength": 200},
            "description": {"bsonType": "string", "maxLength": 5000},
            "category": {"enum": CATEGORIES},
            "url": {"bsonType": "string", "minLength": 1},
            "thumbnail_url": {"bsonType": "string", "minLength": 1},
            "public_id": {"bsonType": "string", "minLength": 1},
            "owner_id": {"bsonType": "string", "minLength": 1},
            "views": {"bsonType": ["int", "long"], "minimum": 0},
            "liked_by": {"bsonType": "array", "uniqueItems": True, "items": {"bsonType": "string"}},
            "comments": {"bsonType": "array"},
            "created_at": {"bsonType": "date"},
        },
    }
}

ORPHANED_ASSETS_VALIDATOR: dict[str, Any] = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": ["public_id", "object_keys", "reason", "created_at", "resolved"],
        "properties": {
            "public_id": {"bsonType": "string", "minLength": 1},
            "object_keys": {"bsonType": "array", "items": {"bsonType": "string"}},
            "reason": {"bsonType": "string"},
            "created_at": {"bsonType": "date"},
            "resolved": {"bsonType": "bool"},
        },
    }
}


class DatabaseInitializer:
    """Creates NaviStream collections, validation rules and indexes."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.client: MongoClient | None = None
        self.db: Database | None = None
        self.database_name = DEFAULT_DATABASE_NAME

    def log(self, message: str, level: str = "INFO") -> None:
        if level == "DEBUG" and not self.verbose:
            return
        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        print(f"[{timestamp}] [{level}] {message}")

    def connect(self) -> bool:
        """
        Connect to MongoDB, retrying with exponential backoff.

        Returns:
            True if connection successful, False otherwise.
        """
        load_dotenv()
        mongodb_uri = os.getenv("MONGODB_URI", DEFAULT_MONGODB_URI)
        self.database_name = os.getenv("MONGODB_DB_NAME", DEFAULT_DATABASE_NAME)

        self.log(f"Connecting to MongoDB at {self._mask_uri(mongodb_uri)}...")

        retry_delay = 2
        for attempt in range(1, CONNECT_MAX_ATTEMPTS + 1):
            try:
                self.client = MongoClient(
                    mongodb_uri,
                    serverSelectionTimeoutMS=CONNECTION_TIMEOUT_MS,
                    connectTimeoutMS=CONNECTION_TIMEOUT_MS,
                    tz_aware=True,
                )
                self.client.admin.command("ping")
                self.db = self.client[self.database_name]
                self.log(f"Connected, using database: {self.database_name}")
                return True
            except ConnectionFailure as e:
                self.log(f"Connection attempt {attempt}/{CONNECT_MAX_ATTEMPTS} failed: {e}", "WARNING")
                if attempt < CONNECT_MAX_ATTEMPTS:
                    self.log(f"Retrying in {retry_delay} seconds...")
                    time.sleep(retry_delay)
                    retry_delay *= 2

        self.log("Failed to connect after all retry attempts", "ERROR")
        return False

    def _mask_uri(self, uri: str) -> str:
        """Hide credentials in a MongoDB URI."""
        if "@" in uri:
            protocol_end = uri.find("://") + 3
            at_pos = uri.rfind("@")
            return f"{uri[:protocol_end]}***:***{uri[at_pos:]}"
        return uri

    def drop_collections(self) -> bool:
        try:
            for name in (VIDEOS, ORPHANED_ASSETS):
                self.db.drop_collection(name)
                self.log(f"Dropped collection: {name}", "WARNING")
            return True
        except PyMongoError as e:
            self.log(f"Error dropping collections: {e}", "ERROR")
            return False

    def create_collection_with_validation(self, name: str, validator: dict[str, Any]) -> Collection:
        """Create ``name`` with ``validator``, or update the rules if it exists."""
        if name in self.db.list_collection_names():
            self.log(f"Collection {name} already exists, updating validation rules", "DEBUG")
            self.db.command("collMod", name, validator=validator, validationLevel="moderate")
            return self.db[name]

        try:
            self.db.create_collection(name, validator=validator, validationLevel="moderate")
            self.log(f"Created collection: {name}")
        except CollectionInvalid as e:
            self.log(f"Collection {name} already exists: {e}", "DEBUG")
        return self.db[name]

    def create_indexes(self, collection: Collection, indexes: list[IndexModel]) -> None:
        existing = collection.index_information()
        for index in indexes:
            index_name = index.document["name"]
            if index_name in existing:
                self.log(f"  Index '{index_name}' already exists, skipping", "DEBUG")
                continue
            try:
                collection.create_indexes([index])
                self.log(f"  Created index: {index_name}", "DEBUG")
            except OperationFailure as e:
                self.log(f"  Error creating index {index_name}: {e}", "WARNING")

    def initialize(self) -> bool:
        try:
            for name, validator in ((VIDEOS, VIDEOS_VALIDATOR), (ORPHANED_ASSETS, ORPHANED_ASSETS_VALIDATOR)):
                collection = self.create_collection_with_validation(name, validator)
                self.create_indexes(collection, COLLECTION_INDEXES[name])
            return True
        except PyMongoError as e:
            self.log(f"Error initializing collections: {e}", "ERROR")
            return False

    def verify_initialization(self) -> bool:
        all_valid = True
        collections = self.db.list_collection_names()
        for name in (VIDEOS, ORPHANED_ASSETS):
            if name not in collections:
                self.log(f"  x {name}: MISSING", "ERROR")
                all_valid = False
                continue
            count = self.db[name].count_documents({})
            index_count = len(self.db[name].index_information()) - 1
            self.log(f"  ok {name}: {count} documents, {index_count} custom indexes")
        return all_valid

    def close(self) -> None:
        if self.client:
            self.client.close()
            self.log("MongoDB connection closed", "DEBUG")


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Initialize the NaviStream MongoDB database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/init_db.py              # Create collections and indexes
  python scripts/init_db.py --verbose    # With detailed logging
  python scripts/init_db.py --drop       # Drop existing collections first (DESTRUCTIVE)
        """,
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing collections before creation (WARNING: destructive operation)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Display detailed operation logs")
    return parser.parse_args()


def main() -> int:
    args = parse_arguments()
    initializer = DatabaseInitializer(verbose=args.verbose)

    try:
        if not initializer.connect():
            return 1

        if args.drop:
            confirmation = input(
                "\nWARNING: This will DELETE ALL VIDEO RECORDS.\nType 'yes' to confirm: "
            )
            if confirmation.lower() != "yes":
                print("Operation cancelled.")
                return 0
            if not initializer.drop_collections():
                return 1

        success = initializer.initialize()
        return 0 if success and initializer.verify_initialization() else 1

    except KeyboardInterrupt:
        print("\n\nInitialization interrupted by user.")
        return 130

    finally:
        initializer.close()


if __name__ == "__main__":
    sys.exit(main())
