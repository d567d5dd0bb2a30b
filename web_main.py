import asyncio
import logging

import uvicorn

from config import build_repositories, configure_logging, load_settings
from infrastructure.security.passwords import BcryptPasswordHasher
from interfaces.discord.handlers import create_discord_bot
from interfaces.web.app import create_web_app

logger = logging.getLogger(__name__)


async def serve() -> None:
    """
    Serve the web app and, when a token is configured, run the Discord bot
    in the same event loop. Both share one account store.
    """

    settings = load_settings()
    configure_logging(settings.log_level)

    account_repo, threat_log = build_repositories(settings)
    hasher = BcryptPasswordHasher(settings.bcrypt_rounds)

    app = create_web_app(account_repo, hasher, settings, threat_log)
    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.host, port=settings.port, log_config=None)
    )

    if not settings.discord_token:
        logger.warning("DISCORD_TOKEN is not set; starting without the Discord bot.")
        await server.serve()
        return

    bot = create_discord_bot(account_repo, hasher, settings, threat_log)
    async with bot:
        bot_task = asyncio.create_task(bot.start(settings.discord_token))
        try:
            await server.serve()
        finally:
            await bot.close()
            await asyncio.gather(bot_task, return_exceptions=True)


def main() -> None:
    asyncio.run(serve())


if __name__ == "__main__":
    main()
