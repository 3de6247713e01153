import os
from dataclasses import dataclass
from pathlib import Path

# load_dotenv() MUST run before Settings.from_env() reads os.environ.
from dotenv import load_dotenv

load_dotenv()

ROOT_DIR = Path(__file__).resolve().parent


def _split_origins(value: str) -> tuple[str, ...]:
    return tuple(o.strip() for o in value.split(",") if o.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./certificates.db"
    jwt_secret: str = "secret"
    jwt_algorithm: str = "HS256"
    generated_dir: Path = ROOT_DIR / "generated"
    uploads_dir: Path = ROOT_DIR / "uploads"
    fonts_dir: Path = ROOT_DIR / "fonts"
    issuer_name: str = "Certificate Studio"
    public_base_url: str = "http://localhost:5173"
    allowed_origins: tuple[str, ...] = ("http://localhost:5173", "http://127.0.0.1:5173")
    # Role barred from issuing certificates. Admin rights (auth.ADMIN_ROLE) do
    # not follow this setting.
    restricted_role: str = "admin"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        env = os.environ
        return cls(
            database_url=env.get("DATABASE_URL", defaults.database_url),
            jwt_secret=env.get("JWT_SECRET", defaults.jwt_secret),
            jwt_algorithm=env.get("JWT_ALGORITHM", defaults.jwt_algorithm),
            generated_dir=Path(env.get("GENERATED_DIR", defaults.generated_dir)),
            uploads_dir=Path(env.get("UPLOADS_DIR", defaults.uploads_dir)),
            fonts_dir=Path(env.get("FONTS_DIR", defaults.fonts_dir)),
            issuer_name=env.get("ISSUER_NAME", defaults.issuer_name),
            public_base_url=env.get("PUBLIC_BASE_URL", defaults.public_base_url).rstrip("/"),
            allowed_origins=_split_origins(env["ALLOWED_ORIGINS"])
            if "ALLOWED_ORIGINS" in env
            else defaults.allowed_origins,
            restricted_role=env.get("RESTRICTED_ROLE", defaults.restricted_role),
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
        )

    @property
    def csv_uploads_dir(self) -> Path:
        return self.uploads_dir / "csv"

    @property
    def template_uploads_dir(self) -> Path:
        return self.uploads_dir / "templates"

    def ensure_directories(self) -> None:
        for directory in (self.generated_dir, self.csv_uploads_dir, self.template_uploads_dir):
            directory.mkdir(parents=True, exist_ok=True)
