from config import build_repositories, configure_logging, load_settings
from infrastructure.security.passwords import BcryptPasswordHasher
from interfaces.discord.handlers import create_discord_bot


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)

    if not settings.discord_token:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    account_repo, threat_log = build_repositories(settings)
    hasher = BcryptPasswordHasher(settings.bcrypt_rounds)

    bot = create_discord_bot(account_repo, hasher, settings, threat_log)
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
