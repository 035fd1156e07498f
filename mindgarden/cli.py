#!/usr/bin/env python3
"""
MindGarden CLI — tend your garden from the terminal.

Every command has a garden name and a standard alias:

    GARDEN          STANDARD        WHAT IT DOES
    ------          --------        ----------------------------------
    bloom           serve, start    Start the HTTP server
    talk            chat            Chat (or run a therapy session)
    checkin         assess, mood    Take the five-question mood assessment
    garden          view            Show the mood garden
    journal         history, log    List conversations or show one
    subscribe       plan            Show, buy or cancel a subscription
    tune            set             Write a runtime_config.yaml override

Local commands work directly against the configured store as the user
given by --user (or $MINDGARDEN_USER).
"""

import argparse
import asyncio
import os
import sys

from mindgarden import __version__

BANNER = r"""
      _,-._
     / \_/ \      MindGarden  v""" + __version__ + r"""
     >-(_)-<      check in, talk it through,
     \_/ \_/      watch the garden grow
       `-'
"""

MOOD_ICONS = {"HAPPY": "🌻", "CALM": "🌿", "SAD": "🌧"}


def _services():
    from mindgarden.config import get_config
    from mindgarden.services import build_services, setup_logging

    cfg = get_config()
    setup_logging(cfg)
    return build_services(cfg)


def _user(args) -> str | None:
    return args.user or os.environ.get("MINDGARDEN_USER")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_bloom(args):
    """Start the MindGarden HTTP server."""
    import uvicorn
    from mindgarden.config import get_config, setting

    cfg = get_config()
    host = args.host or setting("server", "host", "0.0.0.0")
    port = args.port or setting("server", "port", 8000)

    print(BANNER)
    print(f"  Listening on {host}:{port}")
    print(f"  Store: {cfg.get('storage', {}).get('backend', 'sqlite')}")
    print()

    uvicorn.run(
        "mindgarden.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_talk(args):
    """Interactive chat. Empty line or 'quit' ends the session."""
    from mindgarden.conversations import title_from_utterance
    from mindgarden.dialogue.prompts import RoleContext
    from mindgarden.errors import MindGardenError
    from mindgarden.storage.models import MessageType
    from mindgarden.subscription import Feature

    svc = _services()
    identity = svc.identity(_user(args))
    dialogue = svc.dialogue(identity)
    role = RoleContext(args.approach)

    async def run():
        conv_id = args.conversation
        try:
            if role is not RoleContext.GENERAL:
                if not svc.gate(identity).has_feature_access(Feature.AI_THERAPY):
                    print("  ✗  Therapy sessions need a premium subscription (see 'mindgarden subscribe').")
                    return
                session = await dialogue.start_session(role)
                conv_id = session.conversation_id
                print(f"  🌱 {session.opening.text}\n")

            while True:
                try:
                    utterance = input("  you › ").strip()
                except EOFError:
                    break
                if not utterance or utterance.lower() in ("quit", "exit"):
                    break
                if not conv_id:
                    conv_id = dialogue.conversations.create_conversation(title_from_utterance(utterance))
                dialogue.conversations.save_message(conv_id, utterance, MessageType.QUESTION)
                turn = await dialogue.reply(conv_id, utterance, role)
                print(f"\n  🌱 {turn.text}\n")
        except MindGardenError as e:
            print(f"  ✗  {e}")
            return
        if conv_id:
            print(f"  Saved to conversation {conv_id}")

    asyncio.run(run())


def cmd_checkin(args):
    """Five questions, answered 1-5, then the score is saved to a conversation."""
    from mindgarden.assessment import MoodAssessment
    from mindgarden.errors import InvalidArgument, MindGardenError

    svc = _services()
    recorder = svc.recorder(svc.identity(_user(args)))
    assessment = MoodAssessment()

    while not assessment.completed:
        question = assessment.current_question
        print(f"\n  {question.question}")
        print(f"    ({question.description})")
        try:
            raw = input("  › ").strip()
        except EOFError:
            print("\n  Assessment cancelled.")
            return
        if raw.lower() in ("q", "quit", "cancel"):
            assessment.cancel()
            print("  Assessment cancelled.")
            return
        try:
            assessment.answer(int(raw))
        except (ValueError, InvalidArgument):
            print("  Please answer with a number from 1 to 5.")

    try:
        outcome = asyncio.run(recorder.record(assessment, args.conversation))
    except MindGardenError as e:
        print(f"  ✗  {e}")
        return
    print(f"\n  {MOOD_ICONS[outcome.mood.value]}  {outcome.summary}")
    print(f"  Saved to conversation {outcome.conversation_id}")


def cmd_garden(args):
    """Print the garden as a list of plants."""
    from mindgarden.garden import plant_message

    svc = _services()
    identity = svc.identity(_user(args))
    uid = identity.require_user()
    subscription = svc.gate(identity).check_subscription_level()
    view = svc.projector().project_garden(uid, subscription)

    if not view.entries:
        print("  Your garden is empty. Run 'mindgarden checkin' to plant the first seed.")
        return

    print(f"  Dominant mood: {MOOD_ICONS[view.dominant_mood.value]} {view.dominant_mood.value}")
    if view.affirmation:
        print(f"  “{view.affirmation}”")
    print("  " + "─" * 56)
    for entry in view.entries:
        icon = MOOD_ICONS[entry.mood.value]
        print(f"  {icon} {entry.timestamp[:10]}  {entry.score:.1f}/5  {entry.variant}")
        if args.verbose:
            print("     " + plant_message(entry, view.premium).replace("\n", "\n     "))


def cmd_journal(args):
    """List conversations, or print one conversation's messages."""
    svc = _services()
    store = svc.conversations(svc.identity(_user(args)))

    if args.conversation:
        for msg in store.get_conversation_messages(args.conversation):
            who = {"question": "you", "answer": "🌱", "system": "··"}[msg.type.value]
            print(f"  [{msg.timestamp[11:19]}] {who}: {msg.content}")
        return

    conversations = store.get_user_conversations()
    if not conversations:
        print("  No conversations yet.")
        return
    for conv in conversations:
        voice = " 🎙" if conv.has_voice else ""
        print(f"  {conv.id[:12]}  {conv.updated_at[:16]}  {conv.message_count:>3} msgs  {conv.title}{voice}")


def cmd_subscribe(args):
    """Show the current plan; --level buys one, --cancel cancels it."""
    from mindgarden.errors import InvalidArgument
    from mindgarden.subscription import SubscriptionLevel

    svc = _services()
    gate = svc.gate(svc.identity(_user(args)))

    if args.cancel:
        try:
            gate.cancel()
        except InvalidArgument as e:
            print(f"  ✗  {e}")
            return
        print("  Subscription cancelled. Access continues until it expires.")
    elif args.level:
        state = gate.purchase(SubscriptionLevel(args.level), args.months)
        print(f"  ✓  {state.level.value} active until {state.expires_at.date()}")

    details = gate.details()
    print(f"  {details['name']} — {details['expiration_text']}")
    if details["features"]:
        print(f"  Features: {', '.join(details['features'])}")


def cmd_tune(args):
    """Write one runtime override (hot-reloaded by the server)."""
    import yaml
    from mindgarden.config import RUNTIME_OVERRIDES, runtime_override, update_runtime_config

    value = yaml.safe_load(args.value)
    if update_runtime_config(args.key, value):
        print(f"  ✓  {args.key} = {runtime_override(args.key, value)!r}")
    else:
        print(f"  ✗  Could not set {args.key} to {value!r}")
        print(f"     Known keys: {', '.join(sorted(RUNTIME_OVERRIDES))}")


def cmd_banner(args):
    print(BANNER)


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names (garden + standard)."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def _add_user(p):
    p.add_argument("--user", "-u", default=None, help="User id (default: $MINDGARDEN_USER)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mindgarden",
        description="MindGarden — check in, talk it through, watch the garden grow.",
        epilog=(
            "Each command has a garden name and standard aliases.\n"
            "Example: 'mindgarden checkin' and 'mindgarden assess' do the same thing."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"mindgarden {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_bloom(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["bloom", "serve", "start"],
                 "Start the HTTP server", cmd_bloom, setup_bloom)

    def setup_talk(p):
        _add_user(p)
        p.add_argument("--approach", "-a", default="general",
                       choices=["general", "cbt", "mindfulness", "act"],
                       help="Therapy approach (non-general needs premium)")
        p.add_argument("--conversation", "-c", default=None, help="Continue an existing conversation")

    _add_command(sub, ["talk", "chat"],
                 "Chat, or run a therapy session", cmd_talk, setup_talk)

    def setup_checkin(p):
        _add_user(p)
        p.add_argument("--conversation", "-c", default=None,
                       help="Record into an existing conversation")

    _add_command(sub, ["checkin", "assess", "mood"],
                 "Take the mood assessment", cmd_checkin, setup_checkin)

    def setup_garden(p):
        _add_user(p)
        p.add_argument("--verbose", "-v", action="store_true", help="Show each plant's message")

    _add_command(sub, ["garden", "view"],
                 "Show the mood garden", cmd_garden, setup_garden)

    def setup_journal(p):
        _add_user(p)
        p.add_argument("conversation", nargs="?", default=None, help="Conversation id to print")

    _add_command(sub, ["journal", "history", "log"],
                 "List conversations or show one", cmd_journal, setup_journal)

    def setup_subscribe(p):
        _add_user(p)
        p.add_argument("--level", "-l", choices=["premium", "premium_plus"], default=None,
                       help="Buy this level")
        p.add_argument("--months", "-m", type=int, default=1, help="Duration in months")
        p.add_argument("--cancel", action="store_true", help="Cancel the current subscription")

    _add_command(sub, ["subscribe", "plan"],
                 "Show, buy or cancel a subscription", cmd_subscribe, setup_subscribe)

    def setup_tune(p):
        p.add_argument("key", help="Runtime key, e.g. log_level or assessment_garden_prompt_delay")
        p.add_argument("value", help="YAML value")

    _add_command(sub, ["tune", "set"],
                 "Write a runtime override", cmd_tune, setup_tune)

    _add_command(sub, ["banner"], "Print the banner", cmd_banner)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        cmd_banner(args)
        parser.print_help()
        return

    from mindgarden.errors import MindGardenError
    try:
        args.func(args)
    except MindGardenError as e:
        print(f"  ✗  {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
