from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from .config import NARRATIONS, PERSONS, TENSES, EncounterSettings, NarrativeStyle
from .llm_interaction.adapter import LLMAdapter
from .llm_interaction.prompt_builders import CharacterCard, ChatLine, HostContext
from .narrator import MemoryTranscript
from .pipeline import EncounterController, Phase
from .profiles import PRESET_PROFILES, ProfileRegistry
from .schemas import CombatStats, LogEntry
from .state_store import EncounterArchive, SnapshotStore

HELP = """Commands:
  /retry                  re-send the failed request
  /dismiss                dismiss the error
  /conclude               end the encounter early
  /accept enemy|party N   accept a pending combatant
  /discard enemy|party N  discard a pending combatant
  /restore                restore the player to half HP
  /swipe N +1|-1          switch log entry N to another version
  /regen N                regenerate narrative entry N
  /log                    show the log
  /quit                   leave (the encounter stays saved)
Anything else is your action."""


def _print_stats(stats: Optional[CombatStats]) -> None:
    if stats is None:
        return
    print(f"\n[Environment] {stats.environment or 'Unknown location'}")
    for member in stats.party:
        tag = " (you)" if member.is_player else ""
        print(f"  {member.name}{tag}: {member.hp}/{member.max_hp}")
    for enemy in stats.enemies:
        print(f"  {enemy.sprite} {enemy.name}: {enemy.hp}/{enemy.max_hp}")
    print()


def _print_log(entries: List[LogEntry]) -> None:
    for index, entry in enumerate(entries):
        swipes = f" [{entry.swipe_index + 1}/{len(entry.swipes)}]" if len(entry.swipes) > 1 else ""
        print(f"{index:3d} {entry.type.value:>13}: {entry.message}{swipes}")


def _side(word: str) -> str:
    return "enemies" if word.lower().startswith("enem") else "party"


def build_context_provider(args: argparse.Namespace, transcript: MemoryTranscript):
    characters = [CharacterCard(name=name) for name in args.character or []]
    world_info = Path(args.world_info).read_text(encoding="utf-8") if args.world_info else ""

    def provider() -> HostContext:
        history = [ChatLine(speaker=m["name"], text=m["mes"], is_user=m.get("is_user", False)) for m in transcript.messages]
        return HostContext(
            user_name=args.user_name,
            persona=args.persona or "",
            world_info=world_info,
            characters=characters,
            is_group=len(characters) > 1,
            character_name=characters[0].name if characters else None,
            history=history,
        )

    return provider


async def _handle_command(controller: EncounterController, line: str) -> bool:
    """Run one slash command. Returns False when the loop should stop."""
    parts = line.split()
    command, rest = parts[0].lower(), parts[1:]

    if command == "/quit":
        controller.close()
        return False
    if command == "/retry":
        ok = await controller.retry()
        print("[Retry] ok" if ok else f"[Retry] failed: {getattr(controller.last_error, 'message', 'nothing to retry')}")
    elif command == "/dismiss":
        controller.dismiss_error()
    elif command == "/conclude":
        await controller.conclude()
    elif command in ("/accept", "/discard") and len(rest) == 2 and rest[1].isdigit():
        intent = controller.accept_pending if command == "/accept" else controller.discard_pending
        if not await intent(_side(rest[0]), int(rest[1])):
            print("[Pending] nothing at that index")
    elif command == "/restore":
        if not await controller.restore_player():
            print("[Restore] no player to restore")
    elif command == "/swipe" and len(rest) == 2 and rest[0].isdigit():
        direction = -1 if rest[1].startswith("-") else 1
        if not await controller.swipe_log_entry(int(rest[0]), direction):
            print("[Swipe] no other version")
    elif command == "/regen" and len(rest) == 1 and rest[0].isdigit():
        if not await controller.regenerate_log_entry(int(rest[0])):
            reason = controller.regen_error.message if controller.regen_error else "only narrative entries"
            print(f"[Regen] {reason}")
    elif command == "/log":
        _print_log(controller.encounter.display_log)
    else:
        print(HELP)
    return True


async def run(args: argparse.Namespace) -> None:
    settings = EncounterSettings.from_env(
        model=args.model,
        ollama_host=args.host,
        state_root=args.state_root,
        history_depth=args.history_depth,
        combat_style=NarrativeStyle(tense=args.tense, person=args.person, narration=args.narration),
    )
    adapter = LLMAdapter(
        settings.model,
        host=settings.ollama_host,
        default_options=settings.default_options,
        stage_options=settings.stage_options,
        verbose=args.verbose,
    )
    transcript = MemoryTranscript()
    if args.scene:
        transcript.messages.append({"name": args.user_name, "mes": args.scene, "is_user": True})

    controller = EncounterController(
        args.session_name,
        adapter,
        SnapshotStore(settings.state_root),
        transcript,
        profiles=ProfileRegistry(settings.state_root / "profiles.json"),
        settings=settings,
        context_provider=build_context_provider(args, transcript),
        archive=EncounterArchive(settings.state_root),
    )

    if await controller.open():
        answer = (await asyncio.to_thread(input, "Saved encounter found. [C]ontinue or [N]ew? ")).strip().lower()
        if answer.startswith("n"):
            await controller.new_encounter()
        else:
            await controller.continue_encounter()

    if controller.phase is Phase.CONFIGURING:
        controller.configure(profile_id=args.profile)
        print("Setting up the encounter...")
        while not await controller.initialize():
            print(f"[Error] {controller.last_error.message if controller.last_error else 'could not start'}")
            answer = (await asyncio.to_thread(input, "Retry? [y/N] ")).strip().lower()
            if not answer.startswith("y"):
                return

    _print_log(controller.encounter.display_log)
    _print_stats(controller.encounter.combat_stats)
    print("Encounter started. Type /help for commands.")

    while controller.phase not in (Phase.ENDED, Phase.IDLE):
        try:
            line = (await asyncio.to_thread(input, "> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting. The encounter is saved.")
            break
        if not line:
            continue

        if line.startswith("/"):
            if not await _handle_command(controller, line):
                break
        else:
            outcome = await controller.submit_action(line)
            if outcome is not None:
                for action in outcome.enemy_actions:
                    print(f"{action.enemy_name}: {action.action}")
                for action in outcome.party_actions:
                    print(f"{action.member_name}: {action.action}")
                print(f"\n{outcome.narrative}\n")
                if outcome.report.staged:
                    print(f"[Pending] {outcome.report.staged} new combatant(s) waiting: /accept or /discard")

        if controller.phase is Phase.ERROR_AWAITING_RETRY and controller.last_error:
            print(f"[Error] {controller.last_error.message} (/retry or /dismiss)")
        elif controller.phase is Phase.CONCLUDING and controller.last_error:
            print(f"[Summary failed] {controller.last_error.message} (/retry)")
        elif controller.phase is Phase.ACTIVE:
            _print_stats(controller.encounter.combat_stats)

    if controller.phase is Phase.ENDED and transcript.messages:
        last = transcript.messages[-1]
        print(f"\n[{last['name']}]\n{last['mes']}\n")


def main() -> None:
    parser = argparse.ArgumentParser(description="Turn-based encounter runner.")
    parser.add_argument("--model", help="Ollama model id (defaults to ENCOUNTER_MODEL)")
    parser.add_argument("--host", help="Ollama host (defaults to OLLAMA_HOST)")
    parser.add_argument("--session-name", default="session", help="Name of the saved encounter slot")
    parser.add_argument("--state-root", help="Directory for encounter snapshots (defaults to ENCOUNTER_STATE_ROOT)")
    parser.add_argument("--history-depth", type=int, help="Chat lines included in prompts")
    parser.add_argument(
        "--profile",
        choices=[p.id for p in PRESET_PROFILES],
        help="Encounter profile to use for a new encounter",
    )
    parser.add_argument("--user-name", default="User", help="Your character's name")
    parser.add_argument("--persona", help="Short description of your character")
    parser.add_argument(
        "--character",
        action="append",
        help="Name of a character present in the scene (repeatable)",
    )
    parser.add_argument("--world-info", help="Text file with setting/lore")
    parser.add_argument("--scene", help="The message that starts the encounter")
    parser.add_argument("--tense", choices=TENSES, default="present")
    parser.add_argument("--person", choices=PERSONS, default="third")
    parser.add_argument("--narration", choices=NARRATIONS, default="omniscient")
    parser.add_argument("--verbose", action="store_true", help="Enable adapter debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    asyncio.run(run(args))


if __name__ == "__main__":
    main()
