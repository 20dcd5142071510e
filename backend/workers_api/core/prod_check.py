"""
Validaciones de seguridad en arranque para APP_ENV=prod.
Si alguna falla, se lanza RuntimeError y la API no inicia.
"""
from workers_api.core.config import settings

INSECURE_DEFAULTS = {
    "JWT_SECRET_KEY": "change_me_jwt_secret",
    "JWT_REFRESH_SECRET_KEY": "change_me_refresh_secret",
}

DEMO_PASSWORDS = {"admin123", "operator123", "viewer123"}


def collect_production_errors() -> list[str]:
    errors: list[str] = []

    cors = (settings.cors_origins or "").strip()
    if not cors:
        errors.append("CORS_ORIGINS no puede estar vacío en producción.")
    elif cors == "*":
        errors.append("CORS_ORIGINS no puede ser '*' en producción. Configure una lista explícita de orígenes.")

    if (settings.jwt_secret_key or "").strip() in ("", INSECURE_DEFAULTS["JWT_SECRET_KEY"]):
        errors.append("JWT_SECRET_KEY debe estar definido y no usar el valor por defecto en producción.")
    if (settings.jwt_refresh_secret_key or "").strip() in ("", INSECURE_DEFAULTS["JWT_REFRESH_SECRET_KEY"]):
        errors.append("JWT_REFRESH_SECRET_KEY debe estar definido y no usar el valor por defecto en producción.")

    demo = {settings.demo_admin_password, settings.demo_operator_password, settings.demo_viewer_password}
    if demo & DEMO_PASSWORDS:
        errors.append("Las contraseñas DEMO_*_PASSWORD no pueden usar los valores por defecto en producción.")

    if settings.eligibility_test_mode:
        errors.append("ELIGIBILITY_TEST_MODE no puede estar activo en producción.")

    db_url = (settings.database_url or "").strip().lower()
    if db_url.startswith("postgresql"):
        postgres_pwd = (settings.postgres_password or "").strip()
        if not postgres_pwd or "change_me" in postgres_pwd:
            errors.append("POSTGRES_PASSWORD debe estar definido y no usar valor por defecto en producción.")
        if "change_me" in db_url:
            errors.append("DATABASE_URL no debe contener contraseña por defecto (change_me) en producción.")
    return errors


def validate_production_config() -> None:
    """Comprueba que en producción no se usen CORS *, secretos por defecto ni el modo de prueba de elegibilidad."""
    if (settings.app_env or "dev").strip().lower() != "prod":
        return
    errors = collect_production_errors()
    if errors:
        raise RuntimeError("Configuración de producción inválida:\n  - " + "\n  - ".join(errors))
