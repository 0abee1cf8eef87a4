"""
Snowflake Database Client
=========================
Handles connections, transactions and table initialization for Snowflake.

All SQL in this service uses the DB-API ``qmark`` parameter style and
portable column types so the same statements run against any DB-API
connection returned by ``get_connection``.
"""

from contextlib import contextmanager
from typing import Any, Iterator

import snowflake.connector

from config.settings import settings

snowflake.connector.paramstyle = "qmark"


def get_connection() -> snowflake.connector.SnowflakeConnection:
    """Return a Snowflake connection using environment credentials."""
    return snowflake.connector.connect(
        account=settings.SNOWFLAKE_ACCOUNT,
        user=settings.SNOWFLAKE_USER,
        password=settings.SNOWFLAKE_PASSWORD,
        database=settings.SNOWFLAKE_DATABASE,
        schema=settings.SNOWFLAKE_SCHEMA,
        warehouse=settings.SNOWFLAKE_WAREHOUSE,
        autocommit=False,
    )


@contextmanager
def transaction() -> Iterator[Any]:
    """
    Yield a cursor inside a single transaction.

    Commits when the block exits cleanly, rolls back on any exception
    and always closes the connection.
    """
    conn = get_connection()
    try:
        cur = conn.cursor()
        yield cur
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def fetch_dicts(cur: Any) -> list[dict[str, Any]]:
    """Return all remaining rows as dicts keyed by lower-case column name."""
    columns = [col[0].lower() for col in cur.description]
    return [dict(zip(columns, row)) for row in cur.fetchall()]


def fetch_one_dict(cur: Any) -> dict[str, Any] | None:
    rows = fetch_dicts(cur)
    return rows[0] if rows else None


def init_tables() -> None:
    """Create application tables if they do not already exist."""
    ddl_statements = [
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id                 VARCHAR PRIMARY KEY,
            device_fingerprint VARCHAR NOT NULL,
            created_at         TIMESTAMP_NTZ DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS document_fingerprints (
            document_hash VARCHAR PRIMARY KEY,
            result        VARCHAR,
            created_at    TIMESTAMP_NTZ DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS documents (
            id             VARCHAR PRIMARY KEY,
            document_hash  VARCHAR NOT NULL,
            mime_type      VARCHAR,
            document_type  VARCHAR,
            vendor         VARCHAR,
            invoice_number VARCHAR,
            invoice_date   VARCHAR,
            amount         FLOAT,
            currency       VARCHAR,
            confidence     FLOAT,
            raw_extraction VARCHAR,
            session_id     VARCHAR,
            user_id        VARCHAR,
            created_at     TIMESTAMP_NTZ DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS emissions (
            id                 VARCHAR PRIMARY KEY,
            document_id        VARCHAR REFERENCES documents(id),
            scope              INTEGER NOT NULL,
            category           VARCHAR NOT NULL,
            activity_data      FLOAT,
            activity_unit      VARCHAR,
            emission_factor    FLOAT,
            factor_source      VARCHAR,
            co2_kg             FLOAT NOT NULL,
            is_green_benefit   BOOLEAN DEFAULT FALSE,
            data_quality       VARCHAR,
            verified           BOOLEAN DEFAULT FALSE,
            verification_notes VARCHAR,
            session_id         VARCHAR,
            user_id            VARCHAR,
            created_at         TIMESTAMP_NTZ DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS carbon_verifications (
            id                  VARCHAR PRIMARY KEY,
            emission_ids        VARCHAR NOT NULL,
            total_co2_kg        FLOAT NOT NULL,
            verification_status VARCHAR NOT NULL,
            verification_score  FLOAT NOT NULL,
            greenwashing_risk   VARCHAR NOT NULL,
            ccts_eligible       BOOLEAN DEFAULT FALSE,
            cbam_compliant      BOOLEAN DEFAULT FALSE,
            ai_analysis         VARCHAR,
            verified_at         TIMESTAMP_NTZ,
            session_id          VARCHAR,
            user_id             VARCHAR,
            created_at          TIMESTAMP_NTZ DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS monetization_pathways (
            id              VARCHAR PRIMARY KEY,
            verification_id VARCHAR NOT NULL REFERENCES carbon_verifications(id),
            pathway_type    VARCHAR NOT NULL,
            name            VARCHAR,
            partner_name    VARCHAR,
            estimated_value FLOAT,
            currency        VARCHAR,
            status          VARCHAR DEFAULT 'available',
            details         VARCHAR,
            session_id      VARCHAR,
            user_id         VARCHAR,
            created_at      TIMESTAMP_NTZ DEFAULT CURRENT_TIMESTAMP,
            updated_at      TIMESTAMP_NTZ DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS security_audit_log (
            id         VARCHAR PRIMARY KEY,
            event_type VARCHAR NOT NULL,
            user_id    VARCHAR,
            session_id VARCHAR,
            ip_address VARCHAR,
            user_agent VARCHAR,
            details    VARCHAR,
            created_at TIMESTAMP_NTZ DEFAULT CURRENT_TIMESTAMP
        )
        """,
    ]

    with transaction() as cur:
        for ddl in ddl_statements:
            cur.execute(ddl)
