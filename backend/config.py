"""
Configuration et utilitaires partagés
"""

import os
import hashlib
import secrets
from datetime import datetime, timezone
from typing import Optional

import pytz
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB (no URL = storage unavailable, handlers answer db_unavailable)
MONGO_URL = os.environ.get('MONGO_URL', '')
DB_NAME = os.environ.get('DB_NAME', 'keystone_crm')

client = AsyncIOMotorClient(MONGO_URL, tz_aware=True) if MONGO_URL else None
db = client[DB_NAME] if client is not None else None

# Business timezone used for calendar periods (month, quarter, "today")
APP_TIMEZONE = os.environ.get('APP_TIMEZONE', 'UTC')
LOCAL_TZ = pytz.timezone(APP_TIMEZONE)

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

SNAPSHOTS_DISABLED = os.environ.get('REVENUE_INTELLIGENCE_SNAPSHOTS_DISABLED', '').lower() == 'true'


def get_db() -> Optional[AsyncIOMotorDatabase]:
    """Retourne la base MongoDB, ou None si non configurée"""
    return db


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash un mot de passe avec SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Génère un token de session sécurisé"""
    return secrets.token_urlsafe(32)

def now_utc() -> datetime:
    """Retourne la date/heure actuelle (UTC, aware)"""
    return datetime.now(timezone.utc)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return now_utc().isoformat()
