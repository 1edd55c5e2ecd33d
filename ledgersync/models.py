from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from sqlalchemy.sql import func
from ledgersync.db import Base, utcnow

class OAuthState(Base):
    __tablename__ = "oauth_states"

    id = Column(Integer, primary_key=True, index=True)
    state = Column(String, unique=True, index=True, nullable=False)
    connection_name = Column(String, nullable=False)
    return_url = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

class Connection(Base):
    __tablename__ = "connections"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)

    # Token secrets are the only encrypted columns.
    access_token_enc = Column(Text, nullable=False)
    access_token_expires_at = Column(DateTime(timezone=True), nullable=False)
    refresh_token_enc = Column(Text, nullable=False)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=False)

    provider_id = Column(String, nullable=True)
    provider_display_name = Column(String, nullable=True)
    provider_logo_uri = Column(Text, nullable=True)
    consent_status = Column(String, nullable=True)
    consent_expires_at = Column(String, nullable=True)

    accounts = Column(JSON, nullable=False, default=list)
    cards = Column(JSON, nullable=False, default=list)
    last_synced = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())
