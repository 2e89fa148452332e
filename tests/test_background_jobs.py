from datetime import timedelta

from reelstream.models.password_reset_token import PasswordResetToken
from reelstream.models.user import AuthSession
from reelstream.services.background_jobs import BackgroundJobService
from reelstream.utils.timeutils import utcnow

from conftest import create_account


def test_cleanup_sessions_removes_expired_and_revoked(db_session, sql_users, session_factory):
    user = create_account(db_session, "viewer@example.com")
    live = sql_users.create_session(user.id, utcnow() + timedelta(hours=1))
    sql_users.create_session(user.id, utcnow() - timedelta(minutes=1))
    revoked = sql_users.create_session(user.id, utcnow() + timedelta(hours=1))
    sql_users.revoke_session(revoked.id, utcnow())

    jobs = BackgroundJobService(session_factory=session_factory)
    stats = jobs.run_job("cleanup_sessions")

    assert stats["status"] == "success"
    assert stats["removed"] == 2
    db_session.expire_all()
    assert [s.id for s in db_session.query(AuthSession).all()] == [live.id]


def test_cleanup_reset_tokens(db_session, session_factory):
    user = create_account(db_session, "viewer@example.com")
    db_session.add(PasswordResetToken(user_id=user.id, token_hash="a" * 64, expires_at=utcnow() - timedelta(hours=1)))
    db_session.commit()

    jobs = BackgroundJobService(session_factory=session_factory)
    stats = jobs.run_job("cleanup_reset_tokens")

    assert stats["removed"] == 1
    db_session.expire_all()
    assert db_session.query(PasswordResetToken).count() == 0


def test_failed_job_is_recorded(session_factory):
    jobs = BackgroundJobService(session_factory=session_factory)

    def explode(db):
        raise RuntimeError("boom")

    jobs._execute("cleanup_sessions", explode)

    info = {job["id"]: job for job in jobs.get_job_stats()["jobs"]}
    assert info["cleanup_sessions"]["status"] == "failed"
    assert info["cleanup_sessions"]["error"] == "boom"
    assert info["cleanup_reset_tokens"]["status"] == "idle"


def test_unknown_job():
    assert BackgroundJobService().run_job("reindex") is None


def test_start_respects_disable_flag(monkeypatch):
    monkeypatch.setenv("ENABLE_BACKGROUND_JOBS", "false")
    jobs = BackgroundJobService()

    jobs.start()

    assert jobs.scheduler.running is False
    assert jobs.get_job_stats()["scheduler_running"] is False
