"""
Terminal client for the party games server.

Usage:
    python -m client.main [--host HOST] [--port PORT] [--name NAME]
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import Optional

from client.config import settings
from client.game_view import ClientGameView, format_time
from client.network.client import PartyClient
from client.session import GameSession, is_error
from shared.enums import GameType, MessageType


HELP = """
Commands:
  create <type>   - Create a room (timeAuction, timeAuction2, removeOne)
  join <code>     - Join a room by code
  leave           - Leave the room
  start           - Start the game (host only)
  press / release - Hold or let go of the auction control
  cards <a> <b>   - Pick cards for this round
  choice <l|r>    - Play the left or right picked card
  continue        - Leave round results (host only)
  state           - Show the room
  quit            - Disconnect and exit
"""


def setup_logging() -> None:
    """Configure logging."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def print_view(view: ClientGameView) -> None:
    """Print the room as this player sees it."""
    if not view.room:
        print("Not in a room")
        return

    state = view.state
    print("\n" + "=" * 60)
    print(f"Room {view.room['room_code']} ({view.room['game_type']})")
    print(f"Round {state.get('currentRound', 0)} - {view.phase}")

    if view.game_type and view.game_type.is_auction:
        if view.countdown_remaining():
            print(f"Countdown: {format_time(view.countdown_remaining())}")
        if view.auction_elapsed():
            print(f"Auction: {format_time(view.auction_elapsed())}")
        print(f"Your time bank: {format_time(view.local_time_bank())}")
        if state.get("roundWinner"):
            print(f"Last winner: {state['roundWinner'][:8]} with {format_time(state.get('winnerBidTime'))}")
        elif state.get("isTie"):
            print("Last round: tie, nobody scored")
    else:
        print(f"Your cards: {view.available_cards()}")
        if state.get("winningCard") is not None:
            print(f"Winning card: {state['winningCard']}")

    print(f"\nPlayers ({len(view.players)}):")
    for player in view.ordered_players():
        data = player.get("player_data") or {}
        marker = "*" if player["id"] == view.room.get("host_id") else " "
        you = " (you)" if player["id"] == view.player_id else ""
        status = "" if player.get("is_connected") else " [offline]"
        out = " [out]" if data.get("isEliminated") else ""
        score = f"tokens {data.get('victoryTokens', 0)}"
        if "points" in data:
            score = f"points {data['points']}, " + score
        print(f"{marker}{player['player_name']}{you}: {score}{status}{out}")
    print("=" * 60 + "\n")


class TerminalClient:
    """Interactive command loop over a PartyClient."""

    def __init__(self, client: PartyClient):
        self.client = client
        self.session: Optional[GameSession] = None
        self.running = True
        client.add_error_listener(lambda error: print(f"\n  ✗ {error}"))

    async def attach(self) -> None:
        if self.session is None:
            self.session = GameSession(self.client)
        await self.session.attach()

    async def run_interactive(self) -> None:
        print(HELP)
        if self.client.room_code:
            await self.attach()

        while self.running:
            try:
                cmd = await asyncio.get_running_loop().run_in_executor(
                    None, lambda: input(f"[{self.client.player_name}]> ").strip()
                )
            except EOFError:
                break

            if not cmd:
                continue

            parts = cmd.split()
            await self._handle_command(parts[0].lower(), parts[1:])

        if self.session:
            await self.session.detach()
        await self.client.disconnect()

    async def _handle_command(self, command: str, args: list[str]) -> None:
        """Handle a user command."""
        response = None

        if command == "quit":
            self.running = False
            return
        elif command == "create":
            game_type = args[0] if args else GameType.TIME_AUCTION.value
            response = await self.client.create_room(game_type)
            if not is_error(response):
                print(f"✓ Created room {response['data']['room_code']}")
                await self.attach()
        elif command == "join":
            if not args:
                print("Usage: join <code>")
                return
            response = await self.client.join_room(args[0])
            if not is_error(response):
                print(f"✓ Joined room {response['data']['room_code']}")
                await self.attach()
        elif command == "leave":
            if await self.client.leave_room():
                print("✓ Left room")
                if self.session:
                    await self.session.detach()
            return
        elif command == "start":
            response = await self.client.start_game()
        elif command == "press" and self.session:
            response = await self.session.press()
        elif command == "release" and self.session:
            response = await self.session.release()
        elif command == "cards" and self.session:
            try:
                response = await self.session.select_cards([int(card) for card in args])
            except ValueError:
                print("Usage: cards <a> <b>")
                return
        elif command == "choice" and self.session:
            side = {"l": "left", "r": "right"}.get(args[0][:1].lower(), "") if args else ""
            response = await self.session.final_choice(side)
        elif command == "continue":
            response = await self.client.continue_round()
        elif command == "state":
            if self.session:
                print_view(self.session.view)
            else:
                print("Not in a room")
            return
        else:
            print(f"Unknown command: {command}")
            return

        if response is None:
            print("✗ No response from server")
        elif response.get("type") == MessageType.ERROR.value:
            data = response.get("data", {})
            print(f"✗ {data.get('message')} ({data.get('code')})")
        elif response.get("type") == MessageType.ACTION_ACK.value:
            print(f"✓ {response['data'].get('message') or response['data'].get('action')}")


async def main_async(args: argparse.Namespace) -> int:
    client_settings = replace(settings, server_host=args.host, server_port=args.port)
    client = PartyClient(client_settings)

    player_name = args.name or input("Enter your name: ").strip() or "Player"
    if not await client.connect(player_name, args.player_id):
        print("Failed to connect to server")
        return 1

    print(f"✓ Connected as {player_name} (ID: {client.player_id})")
    await TerminalClient(client).run_interactive()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Party games terminal client")
    parser.add_argument("--host", default=settings.server_host, help="Server host")
    parser.add_argument("--port", type=int, default=settings.server_port, help="Server port")
    parser.add_argument("--name", default=None, help="Player name")
    parser.add_argument("--player-id", default=None, help="Reuse a player id to rejoin a room")
    args = parser.parse_args()

    setup_logging()
    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        print("\nGoodbye!")
        return 0


if __name__ == "__main__":
    sys.exit(main())
