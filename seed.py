"""
Development seed data: the admin and customer accounts and their portfolios.

The customer portfolio starts as a copy of the admin one; afterwards it only
changes through projections of the admin's updates.
"""

import copy
from typing import Any, Dict

from auth import AuthService
from config import Settings
from database import PortfolioStore
from logging_config import get_logger
from mirror import ShadowMirror

logger = get_logger(__name__)

SEED_PORTFOLIO: Dict[str, Any] = {
    "type": "software_engineer",
    "profile": {
        "name": "Portfolio Owner",
        "email": "owner@example.com",
        "location": "San Antonio, TX",
        "github": "https://github.com/example",
        "linkedin": "",
        "bio": "Full stack developer building web and mobile applications.",
        "avatarUrl": "",
    },
    "skills": [
        {"name": "AWS", "level": "Advanced", "rating": None},
        {"name": "Terraform", "level": "Advanced", "rating": 4},
        {"name": "Python", "level": "Advanced", "rating": 3},
        {"name": "SQL", "level": "Beginner", "rating": 3},
    ],
    "projects": [
        {
            "title": "Serverless Data Cleaning Pipeline",
            "description": "CSV cleaning pipeline on AWS Lambda with QuickSight dashboards.",
            "repoUrl": "https://github.com/example/serverless-csv-cleaner",
            "demoUrl": "",
            "techStack": ["AWS Lambda", "AWS Quicksight", "Python"],
            "imageUrl": None,
        },
        {
            "title": "Healthcare Wait Time Analysis",
            "description": "SQL analysis of hospital wait times with Excel dashboards.",
            "repoUrl": "https://github.com/example/sql-healthcare-project",
            "demoUrl": "",
            "techStack": ["SQL", "Excel"],
            "imageUrl": None,
        },
    ],
    "experience": [
        {
            "company": "Example Medical Technologies",
            "role": "Clinical Information Management",
            "duration": "Aug 2021 - Jul 2023",
            "details": "Managed EMR systems and backend integrations.",
        },
    ],
    "education": [
        {
            "degree": "Master of Science in Information Technology & Management",
            "institution": "Example University",
            "year": "2025",
        },
    ],
    "certifications": [
        {"title": "AWS", "year": "2023", "imageUrl": None},
    ],
    "resumePdfUrl": "",
    "uiSettings": {
        "baseRem": 1,
        "sectionRem": {
            "about": 1,
            "projects": 1,
            "experience": 1,
            "education": 1,
            "certifications": 1,
            "skills": 1,
        },
    },
}


def seed_portfolio(owner_id: str) -> Dict[str, Any]:
    doc = copy.deepcopy(SEED_PORTFOLIO)
    doc["ownerId"] = owner_id
    return doc


def seed_users(auth_service: AuthService, settings: Settings) -> bool:
    """Create the admin and customer accounts if no user exists yet."""
    if auth_service.users.count() > 0:
        logger.info("users already exist, skipping seed")
        return False

    auth_service.ensure_user("admin", settings.admin_id, settings.admin_password, "admin")
    auth_service.ensure_user("customer", settings.customer_id, settings.customer_password, "customer")
    logger.info("seed users created", admin=settings.admin_id, customer=settings.customer_id)
    return True


def seed_portfolios(mirror: ShadowMirror, store: PortfolioStore, settings: Settings) -> int:
    """Make sure the admin and customer portfolios exist in the mirror and the durable store."""
    created = 0
    for owner_id in (settings.admin_id, settings.customer_id):
        if owner_id in mirror:
            continue
        doc = seed_portfolio(owner_id)
        mirror.insert(doc)
        store.update(owner_id, doc)
        created += 1
    if created:
        logger.info("seed portfolios created", count=created)
    return created
