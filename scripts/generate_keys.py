"""
Genera el par de claves RSA (RS256) con el que se firman los JWT.

Uso:
    python scripts/generate_keys.py [--force]

Escribe las claves en JWT_PRIVATE_KEY_PATH y JWT_PUBLIC_KEY_PATH.
Sin --force no sobrescribe un par existente.
"""

import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

# Agregar el directorio raíz al path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.config import get_settings  # noqa: E402


def write_rsa_keys(private_key_path: Path, public_key_path: Path) -> None:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    private_key_path.parent.mkdir(parents=True, exist_ok=True)
    private_key_path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    private_key_path.chmod(0o600)

    public_key_path.parent.mkdir(parents=True, exist_ok=True)
    public_key_path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )


def main(force: bool = False) -> int:
    settings = get_settings()
    private_key_path = Path(settings.JWT_PRIVATE_KEY_PATH)
    public_key_path = Path(settings.JWT_PUBLIC_KEY_PATH)

    if private_key_path.exists() and not force:
        print(f"Ya existe {private_key_path}. Use --force para regenerar el par.")
        return 1

    write_rsa_keys(private_key_path, public_key_path)
    print(f"Clave privada: {private_key_path}")
    print(f"Clave pública: {public_key_path}")
    # Los tokens emitidos con la clave anterior dejan de validar
    if force:
        print("Las sesiones abiertas deberán volver a iniciar sesión.")
    return 0


if __name__ == "__main__":
    sys.exit(main(force="--force" in sys.argv[1:]))
