"""
Database URL resolution with RDS credentials from Secrets Manager
"""
import os
import re
import json
import logging
import ssl
import urllib.parse
from typing import Optional, Dict, Any

import boto3

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./kelly.db"
DEFAULT_DATABASE_NAME = "kelly"


def get_rds_credentials() -> Optional[Dict[str, Any]]:
    """Get RDS credentials from AWS Secrets Manager"""
    secret_arn = os.environ.get("DB_SECRET_ARN")
    if not secret_arn:
        return None

    try:
        secrets_client = boto3.client('secretsmanager')
        response = secrets_client.get_secret_value(SecretId=secret_arn)
        return json.loads(response['SecretString'])
    except Exception as e:
        logger.error(f"Failed to get RDS credentials: {e}")
        return None


def create_ssl_context():
    """Create SSL context for RDS connections"""
    ssl_context = ssl.create_default_context()
    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE
    return ssl_context


def get_database_url() -> str:
    """Get database URL, swapping in RDS credentials when running on AWS"""
    database_url = os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL

    if not os.environ.get("AWS_LAMBDA_FUNCTION_NAME") or "sqlite" in database_url:
        return database_url

    credentials = get_rds_credentials()
    if not credentials:
        logger.warning("No RDS credentials found, using DATABASE_URL as-is")
        return database_url

    match = re.search(r'postgresql\+asyncpg://[^@]*@([^:/]+):?(\d*)', database_url)
    if not match:
        logger.error("Could not parse DATABASE_URL host")
        return database_url

    host = match.group(1)
    port = match.group(2) or "5432"

    username = credentials.get('username', DEFAULT_DATABASE_NAME)
    password = credentials.get('password', '')

    # Passwords from Secrets Manager routinely contain '@', '/' and '#'
    encoded_username = urllib.parse.quote(username, safe='')
    encoded_password = urllib.parse.quote(password, safe='')

    logger.info(f"Database config: host={host}, port={port}, user={username}")
    return f"postgresql+asyncpg://{encoded_username}:{encoded_password}@{host}:{port}/{DEFAULT_DATABASE_NAME}"
