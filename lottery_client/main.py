#!/usr/bin/env python3
"""
Lottery client application

Connects to the lottery contract, loads the current lotteries and serves the
HTTP gateway until interrupted.
"""

import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

from lottery_client.errors import LotteryClientError
from lottery_client.session import LotterySession
from lottery_client.utils.config import load_config
from lottery_client.utils.logger import get_logger
from lottery_client.web_server import LotteryWebServer

logger = get_logger(__name__)


class LotteryClientApp:
    """Initializes the session and web server and runs them until shutdown."""

    def __init__(self, config=None):
        self.config = config or load_config()
        self.session = LotterySession.from_config(self.config)
        self.web_server = LotteryWebServer(self.config, self.session)

    def _display_config_summary(self):
        blockchain_config = self.config.get('blockchain', {})
        server_config = self.config.get('server', {})
        logger.info("=" * 60)
        logger.info(f"RPC URL: {blockchain_config.get('rpc_url', 'Not configured')}")
        logger.info(f"Chain ID: {blockchain_config.get('chain_id', 'Not configured')}")
        logger.info(f"Contract: {blockchain_config.get('contract_address', 'Not configured')}")
        logger.info(f"Signer: {self.session.viewer or 'Not connected'}")
        logger.info(f"Server: {server_config.get('host', '127.0.0.1')}:{server_config.get('port', 6080)}")
        logger.info("=" * 60)

    async def start(self):
        self._display_config_summary()
        await self.session.initialize()

        result = await self.session.load_all_lotteries()
        if result.error is not None:
            logger.warning(f"Initial lottery load failed: {result.error}")
        else:
            logger.info(f"Initial load: {len(result.data)} lotteries")

        server_config = self.config.get('server', {})
        try:
            await self.web_server.start(
                host=server_config.get('host', '127.0.0.1'),
                port=int(server_config.get('port', 6080)),
            )
        finally:
            await self.stop()

    async def stop(self):
        logger.info("Stopping lottery client")
        await self.session.close()
        self.session.store.clear()


def main():
    """Console entry point."""
    load_dotenv(Path.cwd() / '.env')
    app = LotteryClientApp()
    try:
        asyncio.run(app.start())
    except KeyboardInterrupt:
        logger.info("Lottery client interrupted by user")
    except LotteryClientError as e:
        logger.error(f"Lottery client failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
