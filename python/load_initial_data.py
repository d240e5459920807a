#!/usr/bin/env python3
"""
Initial Data Loading Script for HalamangGaling

Loads initial data into the database including:
- Database tables
- The default admin account
- A sample indigenous representative and community records (optional, for development)

Usage:
    python load_initial_data.py [--with-samples]
"""

import os
import sys
import argparse
import logging
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent))

from sqlalchemy import select

from access_control import Principal
from auth import hash_password
from database.connection import init_db, close_db
from database.knowledge_service import KnowledgeService
from database.models import User, UserRole
from database.repositories import KnowledgeRepository

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

ADMIN_USERNAME = "admin"
ADMIN_EMAIL = "admin@halamanggaling.ph"
SAMPLE_COMMUNITY = "T'boli Community of Lake Sebu"


def _get_or_create_user(session, **fields):
    existing = session.execute(select(User).where(User.email == fields["email"])).scalars().first()
    if existing:
        logger.info(f"User already exists: {existing.username} ({existing.role})")
        return existing, False

    user = User(**fields)
    session.add(user)
    session.flush()
    logger.info(f"Created user: {user.username} ({user.role})")
    return user, True


def load_admin(session, password: str):
    """Create the default admin account unless it already exists."""
    user, created = _get_or_create_user(
        session,
        username=ADMIN_USERNAME,
        email=ADMIN_EMAIL,
        password_hash=hash_password(password),
        role=UserRole.ADMIN,
        first_name="HalamangGaling",
        last_name="Administrator",
    )
    if created and password == "admin123":
        logger.warning("Admin created with the default password. Change it after first login!")
    return user


def load_sample_representative(session):
    """Representative of the sample community, able to manage its IPR."""
    user, _ = _get_or_create_user(
        session,
        username="tboli_rep",
        email="representative@tboli.com.ph",
        password_hash=hash_password(os.getenv("SAMPLE_REP_PASSWORD", "Tboli@123")),
        role=UserRole.INDIGENOUS_REPRESENTATIVE,
        first_name="Maria",
        last_name="T'boli",
        institution="T'boli Tribal Council",
        affiliation_community=SAMPLE_COMMUNITY,
        affiliation_group="T'boli",
        affiliation_role="Authorized Representative",
        can_manage_ipr=True,
    )
    return user


def sample_records():
    """Sample records covering a public and a community-only entry."""
    community = {
        "name": SAMPLE_COMMUNITY,
        "indigenous_group": "T'boli",
        "location": {
            "region": "Region XII (SOCCSKSARGEN)",
            "province": "South Cotabato",
            "municipality": "Lake Sebu",
        },
    }
    consent = {
        "obtained": True,
        "scope_of_use": ["Research", "Education", "Database Inclusion"],
        "consent_document": "PIC agreement on file with the T'boli Tribal Council",
        "witnesses": [{"name": "Barangay Chairperson", "role": "Witness"}],
        "revocable": True,
    }
    return [
        {
            "community": community,
            "knowledge_type": "Medicinal Use",
            "traditional_knowledge": {
                "description": "Leaves are boiled and the decoction taken for cough and fever.",
                "usage": "One cup three times a day",
                "preparation": "Boil a handful of fresh leaves in two cups of water",
                "transmission_method": "Oral tradition from healers to apprentices",
            },
            "consent": consent,
            "ipr": {"status": "public_domain"},
            "access_level": "public",
            "sensitivity": {"level": "Low"},
            "methodology": "Community consultation and participant observation",
        },
        {
            "community": community,
            "knowledge_type": "Spiritual Use",
            "traditional_knowledge": {
                "description": "Plant bundle used in a healing ritual led by the community healer.",
                "rituals": "Performed only by recognized healers",
                "prohibitions": "Not to be gathered during the planting season",
            },
            "consent": {**consent, "scope_of_use": ["Research"]},
            "access_level": "community_only",
            "sensitivity": {
                "level": "Sacred",
                "reason": "Ritual knowledge restricted to the community",
            },
        },
    ]


def load_sample_records(session, author: User) -> int:
    """Create the sample records once; skipped if the community already has any."""
    if KnowledgeRepository(session).list_by_community(SAMPLE_COMMUNITY, exact=True):
        logger.info(f"Sample records already exist for {SAMPLE_COMMUNITY}")
        return 0

    service = KnowledgeService(session)
    principal = Principal.from_user(author)
    created = 0
    for payload in sample_records():
        record = service.create_record(principal, payload, author=author)
        created += 1
        logger.info(f"Created sample record: {record['community']['name']} - {record['knowledgeType']}")
    return created


def main():
    parser = argparse.ArgumentParser(description="Load initial data into the HalamangGaling database")
    parser.add_argument("--with-samples", action="store_true", help="Include a sample representative and records")
    parser.add_argument(
        "--admin-password",
        default=os.getenv("ADMIN_PASSWORD", "admin123"),
        help="Password for a newly created admin (default: $ADMIN_PASSWORD or admin123)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    logger.info("=" * 50)
    logger.info("HalamangGaling Initial Data Loading")
    logger.info("=" * 50)

    try:
        db = init_db()

        logger.info("[1/3] Creating tables...")
        db.create_tables()

        with db.session_scope() as session:
            logger.info("[2/3] Loading admin account...")
            load_admin(session, args.admin_password)

            if args.with_samples:
                logger.info("[3/3] Loading sample representative and records...")
                representative = load_sample_representative(session)
                created = load_sample_records(session, representative)
                logger.info(f"Sample records created: {created}")
            else:
                logger.info("[3/3] Skipping samples (use --with-samples to include)")

        logger.info("=" * 50)
        logger.info("Initial data loading complete!")
        logger.info("=" * 50)
    except Exception as e:
        logger.error(f"Error loading initial data: {e}")
        raise
    finally:
        close_db()


if __name__ == "__main__":
    main()
