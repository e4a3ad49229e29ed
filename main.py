"""
FlashScalper - Main Entry Point
Runs the position lifecycle engine for one Bybit account
"""
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

from config.settings import Settings
from scalper.agent import ScalperAgent, run_agents
from scalper.exchange.bybit_client import BybitClient
from scalper.llm.deepseek_client import DeepSeekClient

load_dotenv(Path(__file__).parent / ".env")


class FlashScalperBot:
    """Main loop around the scalper agents"""

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize the bot"""
        self.settings = settings or Settings.load()
        self._setup_logging()

        logger.info("=" * 80)
        logger.info("FLASHSCALPER POSITION ENGINE INITIALIZING")
        logger.info("=" * 80)

        self.bybit = BybitClient(
            api_key=self.settings.exchange.api_key,
            api_secret=self.settings.exchange.api_secret,
            testnet=self.settings.exchange.testnet,
            settle_coin=self.settings.exchange.settle_coin,
        )
        self.deepseek = DeepSeekClient.from_settings(self.settings.llm)

        self.agents = [
            ScalperAgent(
                agent_id=self.settings.system.agent_id,
                client=self.bybit,
                config=self.settings.scalper.to_config(),
                user_id=self.settings.system.user_id,
                network_timeout=self.settings.system.network_timeout_seconds,
                advisor=self.deepseek,
            )
        ]

        self.tick_interval = self.settings.system.tick_interval_seconds
        self.running = False

    def _setup_logging(self):
        """Configure logging"""
        logger.remove()  # Remove default handler

        # Console logging
        logger.add(
            sys.stderr,
            level=self.settings.logging.log_level,
            format=self.settings.logging.log_format,
        )

        # File logging
        if self.settings.logging.log_to_file:
            logger.add(
                self.settings.logging.log_file_path,
                level=self.settings.logging.log_level,
                format=self.settings.logging.log_format,
                rotation=f"{self.settings.logging.log_max_size_mb} MB",
                retention=self.settings.logging.log_backup_count,
            )

    async def run(self):
        """Main tick loop"""
        self.running = True
        logger.info("Starting main tick loop...")
        logger.info(f"  Tick interval: {self.tick_interval} seconds")

        while self.running:
            try:
                reports = await run_agents(self.agents)
                for agent_id, report in reports.items():
                    if report is None:
                        continue
                    if report.executed:
                        closed = ", ".join(f"{e.symbol} {e.action.value}" for e in report.executed)
                        logger.info(f"[{agent_id}] executed: {closed}")
                    if report.daily and not report.daily.can_trade:
                        logger.warning(f"[{agent_id}] new entries blocked: {report.daily.reason}")

            except Exception as e:
                logger.exception(f"Error in main loop: {e}")

            await asyncio.sleep(self.tick_interval)

    async def shutdown(self):
        """Graceful shutdown"""
        logger.info("Shutting down FlashScalper...")
        self.running = False

        for agent in self.agents:
            summary = agent.monitor.get_position_summary()
            logger.info(
                f"[{agent.agent_id}] open positions: {summary['total_positions']}, "
                f"total PnL ${agent.state.total_pnl:.2f}"
            )


async def main():
    """Main entry point"""
    bot = FlashScalperBot()

    def signal_handler(sig, frame):
        logger.info("Interrupt received, shutting down...")
        bot.running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await bot.run()

    except Exception as e:
        logger.error(f"Fatal error: {e}")

    finally:
        await bot.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
