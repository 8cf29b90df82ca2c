"""Password hashing for portal accounts."""

from passlib.context import CryptContext

from exam_portal.config import settings

# Pin the "2b" ident; bcrypt 4.x dropped the metadata passlib probes for the default
PWD_CONTEXT = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


def hash_password(plain_password: str) -> str:
    return PWD_CONTEXT.hash(plain_password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return PWD_CONTEXT.verify(plain_password, password_hash)


def needs_rehash(password_hash: str) -> bool:
    """True when the hash was made with a different cost than the configured one."""
    return PWD_CONTEXT.needs_update(password_hash)
