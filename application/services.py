from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from domain.errors import (
    AccountNotFound,
    AlreadyLinked,
    CodeNotFound,
    DuplicateEmail,
    DuplicateUsername,
    GenerationExhausted,
    InvalidFormat,
    StoreUnavailable,
)
from domain.link_codes import normalize_link_code
from domain.models import Account
from domain.repositories import AccountRepository, PasswordHasher

from .validators import (
    MIN_RESET_PASSWORD_LENGTH,
    normalize_email,
    validate_password,
    validate_username,
)

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Something went wrong. Please try again later."


@dataclass
class ExternalContext:
    """
    Information about the caller from a chat platform (Discord).

    The application layer never depends on concrete SDK types; it only sees
    this small context object.
    """

    provider: str
    provider_user_id: str
    display_name: str


@dataclass
class OperationResult:
    """Generic result type for simple operations."""

    success: bool
    error_message: Optional[str] = None
    account: Optional[Account] = None


class LoginStatus(enum.Enum):
    OK = "ok"
    INVALID_CREDENTIALS = "invalid_credentials"
    BANNED = "banned"
    UNAVAILABLE = "unavailable"


@dataclass
class LoginResult:
    status: LoginStatus
    account: Optional[Account] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is LoginStatus.OK


class LinkStatus(enum.Enum):
    LINKED = "linked"
    INVALID_FORMAT = "invalid_format"
    CODE_NOT_FOUND = "code_not_found"
    ALREADY_LINKED = "already_linked"
    UNAVAILABLE = "unavailable"


LINK_MESSAGES = {
    LinkStatus.LINKED: "Your PulseHub account has been successfully linked!",
    LinkStatus.INVALID_FORMAT: (
        "That doesn't look like a link code. Codes are 8 letters or digits."
    ),
    LinkStatus.CODE_NOT_FOUND: (
        "Invalid or expired code. Try generating a new one from the website."
    ),
    LinkStatus.ALREADY_LINKED: (
        "This account or your Discord user is already linked."
    ),
    LinkStatus.UNAVAILABLE: "Something went wrong while linking your account.",
}


@dataclass
class LinkResult:
    status: LinkStatus
    username: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is LinkStatus.LINKED

    @property
    def message(self) -> str:
        return LINK_MESSAGES[self.status]


def register_account(
    username: str,
    email: str,
    password: str,
    account_repo: AccountRepository,
    hasher: PasswordHasher,
) -> OperationResult:
    """
    Validate input and create a new, unlinked account.

    The returned account carries the link code the user must present
    through the Discord `/link` command.
    """

    error = validate_username(username) or validate_password(password)
    if error:
        return OperationResult(success=False, error_message=error)

    normalized_email = normalize_email(email)
    if normalized_email is None:
        return OperationResult(success=False, error_message="Invalid email address.")

    try:
        account = account_repo.create_account(
            username.strip(),
            normalized_email,
            hasher.hash(password),
        )
    except DuplicateUsername:
        return OperationResult(success=False, error_message="Username is already taken.")
    except DuplicateEmail:
        return OperationResult(success=False, error_message="Email is already registered.")
    except (StoreUnavailable, GenerationExhausted):
        logger.exception("Registration failed for %s", username)
        return OperationResult(success=False, error_message=UNAVAILABLE_MESSAGE)

    logger.info("Registered account %s (%s)", account.username, account.id)
    return OperationResult(success=True, account=account)


def authenticate(
    identifier: str,
    password: str,
    account_repo: AccountRepository,
    hasher: PasswordHasher,
) -> LoginResult:
    """Check credentials given a username or an email address."""

    if not identifier or not password:
        return LoginResult(
            status=LoginStatus.INVALID_CREDENTIALS,
            error_message="Invalid credentials.",
        )

    try:
        account = account_repo.find_by_credential(identifier)
    except StoreUnavailable:
        logger.exception("Login lookup failed")
        return LoginResult(status=LoginStatus.UNAVAILABLE, error_message=UNAVAILABLE_MESSAGE)

    if account is None or not hasher.verify(password, account.password_hash):
        return LoginResult(
            status=LoginStatus.INVALID_CREDENTIALS,
            error_message="Invalid credentials.",
        )

    if account.is_banned:
        return LoginResult(status=LoginStatus.BANNED, account=account)

    return LoginResult(status=LoginStatus.OK, account=account)


def link_account(
    code: str,
    discord_id: str,
    account_repo: AccountRepository,
) -> LinkResult:
    """
    Bind a Discord identity to the account holding `code`.

    The code is normalized and format-checked before the store is touched.
    The bind itself is the store's atomic `consume_link_code`, so two
    concurrent attempts with the same code cannot both succeed.
    """

    try:
        normalized = normalize_link_code(code)
    except InvalidFormat:
        return LinkResult(status=LinkStatus.INVALID_FORMAT)

    try:
        account = account_repo.find_by_link_code(normalized)
        if account is None:
            return LinkResult(status=LinkStatus.CODE_NOT_FOUND)

        if account.discord_id is not None and account.discord_id != str(discord_id):
            return LinkResult(status=LinkStatus.ALREADY_LINKED)

        linked = account_repo.consume_link_code(account.id, normalized, str(discord_id))
    except CodeNotFound:
        return LinkResult(status=LinkStatus.CODE_NOT_FOUND)
    except AlreadyLinked:
        return LinkResult(status=LinkStatus.ALREADY_LINKED)
    except (StoreUnavailable, AccountNotFound):
        logger.exception("Linking failed for discord user %s", discord_id)
        return LinkResult(status=LinkStatus.UNAVAILABLE)

    logger.info("Linked account %s to discord user %s", linked.username, discord_id)
    return LinkResult(status=LinkStatus.LINKED, username=linked.username)


def reissue_link_code(
    account_id: str,
    account_repo: AccountRepository,
) -> OperationResult:
    """Replace the link code of an account that has not been linked yet."""

    try:
        account = account_repo.replace_link_code(account_id)
    except AlreadyLinked:
        return OperationResult(
            success=False,
            error_message="This account is already linked to Discord.",
        )
    except AccountNotFound:
        return OperationResult(success=False, error_message="Account not found.")
    except (StoreUnavailable, GenerationExhausted):
        logger.exception("Could not re-issue link code for %s", account_id)
        return OperationResult(success=False, error_message=UNAVAILABLE_MESSAGE)

    return OperationResult(success=True, account=account)


def reset_password(
    external_ctx: ExternalContext,
    new_password: str,
    account_repo: AccountRepository,
    hasher: PasswordHasher,
) -> OperationResult:
    """
    Set a new password for the account linked to the caller.

    Only linked accounts can do this; the Discord identity is the proof
    of ownership.
    """

    new_password = (new_password or "").strip()
    if len(new_password) < MIN_RESET_PASSWORD_LENGTH:
        return OperationResult(
            success=False,
            error_message=(
                f"Password must be at least {MIN_RESET_PASSWORD_LENGTH} characters long."
            ),
        )

    try:
        account = account_repo.find_by_discord_id(external_ctx.provider_user_id)
        if account is None:
            return OperationResult(
                success=False,
                error_message=(
                    "Your Discord account is not linked to a PulseHub account. "
                    "Use your link code in the server to link first."
                ),
            )
        account = account_repo.update_password_hash(account.id, hasher.hash(new_password))
    except (StoreUnavailable, AccountNotFound):
        logger.exception("Password reset failed for %s", external_ctx.provider_user_id)
        return OperationResult(success=False, error_message=UNAVAILABLE_MESSAGE)

    logger.info(
        "Password reset via command: %s (%s)",
        account.username,
        external_ctx.provider_user_id,
    )
    return OperationResult(success=True, account=account)


def view_linked_account(
    external_ctx: ExternalContext,
    account_repo: AccountRepository,
) -> OperationResult:
    try:
        account = account_repo.find_by_discord_id(external_ctx.provider_user_id)
    except StoreUnavailable:
        logger.exception("Lookup failed for %s", external_ctx.provider_user_id)
        return OperationResult(success=False, error_message=UNAVAILABLE_MESSAGE)

    if account is None:
        return OperationResult(
            success=False,
            error_message=(
                "You do not have a PulseHub account linked to this Discord account."
            ),
        )
    return OperationResult(success=True, account=account)
