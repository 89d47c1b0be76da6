"""
Push notification interface for live admin dashboards.

The round engine calls these hooks after a bet is placed and after a round
is declared or cancelled. It owns no subscription state: a transport
(WebSocket, message bus, ...) subclasses RoundNotifier and fans out.
"""
import logging

logger = logging.getLogger(__name__)


class RoundNotifier:
    """No-op notifier; subclass and override the hooks you need."""

    def bet_placed(self, round_id: str, snapshot: dict) -> None:
        pass

    def round_declared(self, round_id: str, summary, snapshot: dict) -> None:
        pass

    def round_cancelled(self, round_id: str, summary) -> None:
        pass


class LoggingNotifier(RoundNotifier):
    """Writes every notification to the log. Default for the HTTP app."""

    def bet_placed(self, round_id: str, snapshot: dict) -> None:
        logger.info(
            f"[Risk] Round {round_id}: {snapshot.get('total_bets', 0)} bets, "
            f"collection {snapshot.get('total_collection')}"
        )

    def round_declared(self, round_id: str, summary, snapshot: dict) -> None:
        logger.info(
            f"[Risk] Round {round_id} declared {summary.number} "
            f"({summary.color.value}, {summary.size.value}) profit {summary.profit}"
        )

    def round_cancelled(self, round_id: str, summary) -> None:
        logger.info(f"[Risk] Round {round_id} cancelled, {summary.refunded_bets} bets refunded")
