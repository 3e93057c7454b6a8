"""
Pytest fixtures for testing
"""
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, JSON
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool

from noticehub.config import Settings
from noticehub.infrastructure.db.session import Base
from noticehub.infrastructure.db import models  # noqa: F401


TEST_ADMIN_KEY = "test-admin-key"


def _create_schema(engine):
    # SQLite has no JSONB; remap to JSON for tests
    for table in Base.metadata.tables.values():
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()
    Base.metadata.create_all(engine)


@pytest.fixture
def db_engine():
    """In-memory SQLite shared by every session of one test, with JSONB→JSON mapping."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite with a real connection pool, for tests with several concurrent sessions."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'noticehub.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    _create_schema(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False)


@pytest.fixture
def db_session(session_factory) -> Session:
    """Create database session for tests"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret",
        ADMIN_API_KEY=TEST_ADMIN_KEY,
        SCHEDULER_ENABLED=False,
        INGEST_MAX_WORKERS=1,
        VAPID_PUBLIC_KEY="",
        VAPID_PRIVATE_KEY="",
    )


@pytest.fixture
def app(settings, session_factory):
    from noticehub.main import create_app
    return create_app(settings=settings, session_factory=session_factory)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def now():
    """Fixed clock: before the sample notice window (2026-03-01 01:00Z .. 2026-03-08 02:30Z)."""
    return datetime(2026, 2, 20, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Catalog + HTTP fakes
# ---------------------------------------------------------------------------

SAMPLE_RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Game notices</title>
    <link>https://game.example.com/</link>
    <item>
      <title>[KR] Pickup Recruitment Notice</title>
      <link>https://game.example.com/notice/1</link>
      <guid isPermaLink="false">notice-1</guid>
      <category>event</category>
      <pubDate>Mon, 16 Feb 2026 09:00:00 +0000</pubDate>
      <description><![CDATA[<p>Rate up starts at 2026/03/01 10:00 ~ 2026/03/08 11:30</p>]]></description>
    </item>
    <item>
      <title>General Notice</title>
      <link>https://game.example.com/notice/2</link>
      <description>This is a generic announcement without schedule info.</description>
    </item>
  </channel>
</rss>
"""

RSS_URL = "https://game.example.com/rss"


class FakeResponse:
    def __init__(self, status_code=200, content=b"", content_type="text/html; charset=utf-8"):
        self.status_code = status_code
        self.content = content
        self.headers = {"Content-Type": content_type} if content_type else {}


class FakeHttp:
    """Stands in for requests.Session: url -> (status, body[, content type]) or exception."""

    def __init__(self, routes):
        self.routes = dict(routes)
        self.calls = []
        self.closed = False

    def get(self, url, timeout=None, allow_redirects=True):
        self.calls.append(url)
        if url not in self.routes:
            return FakeResponse(404, b"not found")
        result = self.routes[url]
        if isinstance(result, Exception):
            raise result
        return FakeResponse(*result)

    def close(self):
        self.closed = True


@pytest.fixture
def make_http():
    def factory(routes):
        return FakeHttp(routes)
    return factory


@pytest.fixture
def rss_http():
    return FakeHttp({RSS_URL: (200, SAMPLE_RSS, "application/rss+xml; charset=utf-8")})


@pytest.fixture
def catalog(db_session):
    """One game, its KR region (Asia/Seoul) and an RSS source, committed."""
    from noticehub.infrastructure.db.models import Game, Region, SourceModel

    game = Game(slug="starfall", name="Starfall")
    db_session.add(game)
    db_session.flush()

    region = Region(game_id=game.id, code="KR", timezone="Asia/Seoul")
    db_session.add(region)
    db_session.flush()

    source = SourceModel(
        region_id=region.id,
        type="RSS",
        base_url="https://game.example.com/",
        list_url=RSS_URL,
        fetch_interval_minutes=30,
        config_json={},
    )
    db_session.add(source)
    db_session.commit()

    return {"game": game, "region": region, "source": source}
