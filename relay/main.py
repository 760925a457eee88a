from __future__ import annotations
import argparse, asyncio, json, os, sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from relay.clients import HttpExecutionClient, LocalExecutionClient, LocalTargetCreator
from relay.config import Config, load_config
from relay.core.errors import ParameterError
from relay.llm.schemas import parse_turn
from relay.log import configure_logging
from relay.orchestration.machine import InvalidTransition, Orchestrator
from relay.orchestration.state import Idle
from relay.orchestration.surface import Card, present
from relay_exec.service import build_service
from relay_exec.store import StateStore
from relay_exec.tokens_hmac import mint

HELP = "commands: confirm | cancel | choose <n> | alt <n> | create | retry | dismiss | quit"


def _print_card(card: Card) -> None:
    if card.kind == "idle":
        return
    print(f"\n[{card.tone}] {card.title}")
    if card.body:
        print(f"  {card.body}")
    for label, value in card.rows:
        print(f"  {label}: {value}")
    for i, o in enumerate(card.options, 1):
        print(f"  {i}. {o.title}" + (f" ({o.subtitle})" if o.subtitle else ""))
    for i, (_, label) in enumerate(card.alternatives, 1):
        print(f"  {i}. {label}")
    if card.actions:
        print(f"  -> {', '.join(card.actions)}")


async def _command(orch: Orchestrator, line: str) -> bool:
    cmd, _, arg = line.strip().partition(" ")
    card = present(orch.state, orch.cfg.default_tz)
    if cmd == "quit":
        return False
    if cmd == "confirm":
        await orch.confirm()
    elif cmd == "cancel":
        orch.cancel()
    elif cmd == "choose":
        await orch.choose_option(card.options[int(arg) - 1].id)
    elif cmd == "alt":
        await orch.choose_alternative(card.alternatives[int(arg) - 1][0])
    elif cmd == "create":
        await orch.confirm_new_target()
    elif cmd == "retry":
        await orch.retry()
    elif cmd == "dismiss":
        orch.dismiss()
    else:
        print(HELP)
    return True


async def interactive(cfg: Config, principal_id: str, turn: dict, conversation_id: Optional[str]) -> None:
    if cfg.exec_url:
        token = mint(cfg.exec_secret_bytes, principal_id=principal_id, ttl_s=cfg.token_ttl_s)
        client = HttpExecutionClient(cfg.exec_url, token, principal_id, timeout_s=cfg.call_timeout_s)
    else:
        client = LocalExecutionClient(build_service(cfg), principal_id)
    # new contacts land in the local state dir, which the server shares when run from the same artifacts dir
    creator = LocalTargetCreator(StateStore(Path(cfg.artifacts_dir) / "state"), principal_id)
    orch = Orchestrator(client, creator, cfg)

    def show(state, notice):
        if notice:
            print(f"assistant: {notice}")
        _print_card(present(state, cfg.default_tz))

    orch.subscribe(show)
    proposal = parse_turn(turn, conversation_id)
    if isinstance(proposal, str):
        print(f"assistant: {proposal}")
        return
    await orch.propose(proposal)
    print(HELP)
    while not isinstance(orch.state, Idle):
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            break
        try:
            if not await _command(orch, line):
                break
        except (InvalidTransition, IndexError, ValueError) as e:
            print(f"! {e}")


def main():
    ap = argparse.ArgumentParser(prog="relay")
    ap.add_argument("--serve", action="store_true", help="run the execution RPC server")
    ap.add_argument("--host", default=os.getenv("RELAY_HOST", "127.0.0.1"))
    ap.add_argument("--port", type=int, default=int(os.getenv("RELAY_PORT", "8787")))
    ap.add_argument("--mint-token", metavar="PRINCIPAL", help="print a bearer token for PRINCIPAL")
    ap.add_argument("--principal", default="local")
    ap.add_argument("--conversation", default=None)
    ap.add_argument("--turn", help='model turn as JSON, e.g. {"action": {"name": "setReminder", "parameters": {...}}}')
    args = ap.parse_args()

    cfg = load_config()
    configure_logging(cfg.log_level, cfg.log_json)

    if args.mint_token:
        print(mint(cfg.exec_secret_bytes, principal_id=args.mint_token, ttl_s=cfg.token_ttl_s))
        return
    if args.serve:
        import uvicorn
        uvicorn.run("relay_api.app:create_default_app", factory=True, host=args.host, port=args.port)
        return

    raw = args.turn if args.turn is not None else sys.stdin.readline()
    try:
        turn = json.loads(raw)
        asyncio.run(interactive(cfg, args.principal, turn, args.conversation))
    except (ValueError, ValidationError, ParameterError) as e:
        print(f"bad turn: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
