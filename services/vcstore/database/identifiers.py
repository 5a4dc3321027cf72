"""Identifier derivation and credential generation for provisioned databases.

Names are pure functions of the instance identity so that provisioning and
teardown always agree on which objects belong to an instance.
"""

import hashlib
import secrets
import string

NAME_PREFIX = "vcluster_"

PASSWORD_ALPHABET = string.ascii_letters + string.digits
MIN_PASSWORD_LENGTH = 32

# Order matters: "--" must go before single hyphens become underscores.
_STRIPPED_SEQUENCES = ("`", "'", '"', ";", "--")


def sanitize_identifier(identifier: str) -> str:
    """Strip quoting and comment characters and turn hyphens into underscores.

    Only applied to names derived from the instance name and namespace; it is
    not a general-purpose filter for untrusted SQL.

    Example:
        "my-vcluster'; DROP" -> "my_vcluster DROP"
    """
    for sequence in _STRIPPED_SEQUENCES:
        identifier = identifier.replace(sequence, "")
    return identifier.replace("-", "_")


def _short_hash(value: str, nbytes: int = 4) -> str:
    digest = hashlib.md5(value.encode(), usedforsecurity=False).digest()
    return digest[:nbytes].hex()


def deterministic_suffix(namespace: str, name: str, nbytes: int = 4) -> str:
    """Fixed-width hex suffix derived from "<namespace>/<name>"."""
    return _short_hash(f"{namespace}/{name}", nbytes)


def database_name(instance_name: str, namespace: str, max_length: int = 63) -> str:
    """Database name for an instance: vcluster_<name>_<8 hex>.

    The hash suffix keeps instances with the same name in different namespaces
    apart. Long names are truncated before the suffix so the result fits the
    dialect's identifier limit.
    """
    suffix = "_" + deterministic_suffix(namespace, instance_name)
    base = NAME_PREFIX + sanitize_identifier(instance_name)
    if len(base) + len(suffix) > max_length:
        base = base[: max_length - len(suffix)]
    return base + suffix


def database_user(instance_name: str, max_length: int = 63) -> str:
    """Database user for an instance: vcluster_<name>.

    Depends on the instance name only. When the name does not fit, it is
    truncated and a short hash of the full name is appended.
    """
    user = NAME_PREFIX + sanitize_identifier(instance_name)
    if len(user) <= max_length:
        return user
    suffix = "_" + _short_hash(instance_name)
    return user[: max_length - len(suffix)] + suffix


def random_password(length: int = MIN_PASSWORD_LENGTH) -> str:
    """Generate an alphanumeric password from the OS CSPRNG."""
    if length < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password length must be at least {MIN_PASSWORD_LENGTH}")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
