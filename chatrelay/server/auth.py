import asyncio

import bcrypt

from .errors import AuthError, ValidationError
from .models import User
from .repo import UsersRepo
from ..utils.logger import setup_logger

logger = setup_logger('chatrelay.auth')

# bcrypt only looks at the first 72 bytes and newer releases refuse longer input
MAX_PASSWORD_BYTES = 72


def check_password_length(password: str) -> bytes:
    """Encode a password, rejecting ones bcrypt cannot hash.

    Raises:
        ValidationError: If the UTF-8 encoding is longer than 72 bytes
    """
    raw = password.encode("utf-8")
    if len(raw) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return raw


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(check_password_length(password), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    raw = check_password_length(password)
    try:
        return bcrypt.checkpw(raw, password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        logger.warning("Stored password hash is malformed")
        return False


class AuthService:
    """Username/password login with registration on first use.

    Hashing and checking run in a worker thread so a login never stalls
    the event loop that relays chat and signaling traffic.
    """

    def __init__(self, users_repo: UsersRepo, rounds: int = 12):
        self.users = users_repo
        self.rounds = rounds

    async def login(self, username: str, password: str) -> User:
        """Authenticate a user, registering unseen usernames.

        Args:
            username (str): Login name
            password (str): Plaintext password, only ever hashed

        Returns:
            User: The existing or newly registered user

        Raises:
            ValidationError: If username or password is missing or too long
            AuthError: If the password does not match the stored hash
        """
        if not isinstance(username, str) or not username.strip():
            raise ValidationError("username is required")
        if not isinstance(password, str) or not password:
            raise ValidationError("password is required")
        check_password_length(password)
        username = username.strip()

        user = self.users.find_by_username(username)
        if user is None:
            password_hash = await asyncio.to_thread(hash_password, password, self.rounds)
            # Another login may have registered the name while we were hashing
            user = self.users.find_by_username(username)
            if user is None:
                user = self.users.create(username, password_hash)
                logger.info(f"Login: registered new user '{username}' ({user.user_id})")
                return user

        if not await asyncio.to_thread(verify_password, password, user.password_hash):
            logger.warning(f"Login: wrong password for '{username}'")
            raise AuthError("Invalid username or password")

        logger.info(f"Login: user '{username}' ({user.user_id}) authenticated")
        return user
