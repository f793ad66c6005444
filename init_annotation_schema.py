#!/usr/bin/env python3
"""
Create the annotation schema and, optionally, a development user.

Usage:
    python init_annotation_schema.py
    python init_annotation_schema.py --dev-user dev@example.com --tier premium
"""

import sys
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    arg_parser = argparse.ArgumentParser(description="Initialize the legal annotations database")
    arg_parser.add_argument(
        "--dev-user",
        type=str,
        default=None,
        help="E-mail of a development profile to create, with a sample document",
    )
    arg_parser.add_argument(
        "--tier",
        type=str,
        default="free",
        choices=["free", "premium", "pro", "enterprise"],
        help="Subscription tier of the development profile (default: free)",
    )
    args = arg_parser.parse_args()

    from execution.legal_annotations.repository import AnnotationRepository

    store = AnnotationRepository()
    store.connect()
    try:
        store.initialize_schema()

        if not args.dev_user:
            return

        from execution.legal_annotations.auth import create_session_jwt

        profile = store.create_profile(args.dev_user, subscription_tier=args.tier)
        document = store.create_document(profile["id"], "sample.pdf")
        token = create_session_jwt(profile["id"], profile["email"], profile.get("full_name") or "")

        print("\n" + "=" * 50)
        print("Development profile ready")
        print("=" * 50)
        print(f"\n  user id:     {profile['id']}")
        print(f"  document id: {document['id']}")
        print(f"  tier:        {profile['subscription_tier']}")
        print(f"\n  session token:\n  {token}\n")
        print("Send it as 'Authorization: Bearer <token>'.")
        print("=" * 50)
    except Exception as e:
        logger.error(f"Initialization failed: {e}")
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
