from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    app_name: str = 'workers-control-api'
    app_env: str = Field(default='dev', alias='APP_ENV')
    app_port: int = Field(default=8000, alias='APP_PORT')

    database_url: str = Field(default='sqlite:///./data/workers_api.db', alias='DATABASE_URL')
    db_pool_size: int = Field(default=10, alias='DB_POOL_SIZE')
    db_max_overflow: int = Field(default=20, alias='DB_MAX_OVERFLOW')
    db_pool_timeout: int = Field(default=30, alias='DB_POOL_TIMEOUT')
    db_pool_recycle: int = Field(default=1800, alias='DB_POOL_RECYCLE')
    db_bootstrap_on_start: bool = Field(default=True, alias='DB_BOOTSTRAP_ON_START')
    postgres_password: str = Field(default='', alias='POSTGRES_PASSWORD')

    jwt_secret_key: str = Field(default='change_me_jwt_secret', alias='JWT_SECRET_KEY')
    jwt_refresh_secret_key: str = Field(default='change_me_refresh_secret', alias='JWT_REFRESH_SECRET_KEY')
    jwt_algorithm: str = Field(default='HS256', alias='JWT_ALGORITHM')
    jwt_expire_minutes: int = Field(default=120, alias='JWT_EXPIRE_MINUTES')
    jwt_refresh_expire_minutes: int = Field(default=60 * 24 * 30, alias='JWT_REFRESH_EXPIRE_MINUTES')
    auth_max_failed_attempts: int = Field(default=5, alias='AUTH_MAX_FAILED_ATTEMPTS')
    auth_lock_minutes: int = Field(default=15, alias='AUTH_LOCK_MINUTES')

    auth_login_rate_limit: int = Field(default=20, alias='AUTH_LOGIN_RATE_LIMIT')
    auth_login_rate_window_seconds: int = Field(default=60, alias='AUTH_LOGIN_RATE_WINDOW_SECONDS')
    write_rate_limit: int = Field(default=240, alias='WRITE_RATE_LIMIT')
    write_rate_window_seconds: int = Field(default=60, alias='WRITE_RATE_WINDOW_SECONDS')

    cors_origins: str = Field(default='*', alias='CORS_ORIGINS')

    demo_admin_user: str = Field(default='admin', alias='DEMO_ADMIN_USER')
    demo_admin_password: str = Field(default='admin123', alias='DEMO_ADMIN_PASSWORD')
    demo_operator_user: str = Field(default='operator', alias='DEMO_OPERATOR_USER')
    demo_operator_password: str = Field(default='operator123', alias='DEMO_OPERATOR_PASSWORD')
    demo_viewer_user: str = Field(default='viewer', alias='DEMO_VIEWER_USER')
    demo_viewer_password: str = Field(default='viewer123', alias='DEMO_VIEWER_PASSWORD')

    eligibility_threshold_hours: int = Field(default=24, alias='ELIGIBILITY_THRESHOLD_HOURS')
    eligibility_test_mode: bool = Field(default=False, alias='ELIGIBILITY_TEST_MODE')
    eligibility_test_user_ids: str = Field(default='', alias='ELIGIBILITY_TEST_USER_IDS')

    sync_lock_timeout_minutes: int = Field(default=30, alias='SYNC_LOCK_TIMEOUT_MINUTES')
    portal_incident_sample_limit: int = Field(default=10, alias='PORTAL_INCIDENT_SAMPLE_LIMIT')
    portal_incident_recent_limit: int = Field(default=20, alias='PORTAL_INCIDENT_RECENT_LIMIT')

    def test_user_ids(self) -> set[str]:
        return {u.strip() for u in (self.eligibility_test_user_ids or '').split(',') if u.strip()}


settings = Settings()
