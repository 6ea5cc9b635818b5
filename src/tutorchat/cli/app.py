"""Main CLI application using Typer."""
import asyncio
import base64
import mimetypes
from datetime import datetime
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..chat import ChatController, ControllerEvent, EventKind
from ..config import DEFAULT_FLASHCARD_COUNT, DEFAULT_QUIZ_LENGTH, MAX_STRUCTURED_ITEMS
from ..errors import MalformedSessionError, TutorChatError, UnknownSubjectError
from ..history import (
    ChatSession,
    InlineData,
    InlineDataPart,
    Message,
    Part,
    Role,
    SessionStore,
    TextPart,
)
from ..subjects import Subject, get_subject, load_subjects
from ..tutor import Flashcard, QuizItem
from .providers import get_storage, require_service, setup_logging

# Load environment variables
load_dotenv()

# Create Typer app
app = typer.Typer(
    name="tutorchat",
    help="Subject-tuned AI tutor with saved chats, quizzes and flashcards",
    no_args_is_help=True,
    add_completion=True,
)

# Console for rich output
console = Console()

REPL_COMMANDS = [
    ("/new", "Start a new chat"),
    ("/list", "List saved chats"),
    ("/load N", "Open chat number N from /list"),
    ("/delete N", "Delete chat number N from /list"),
    ("/clear", "Delete every saved chat for this subject"),
    ("/retry", "Try the last failed reply again"),
    ("/quiz [n]", f"Quiz on this chat (default {DEFAULT_QUIZ_LENGTH} questions)"),
    ("/hard [n]", "Extra-hard quiz on this chat"),
    ("/cards [n]", f"Flashcards from this chat (default {DEFAULT_FLASHCARD_COUNT})"),
    ("/image PATH [question]", "Send an image, optionally with a question"),
    ("/help", "Show this help"),
    ("/quit", "Leave the chat"),
]


@app.callback()
def main_options(
    log_level: str = typer.Option(
        "warning",
        "--log-level",
        "-l",
        help="Log level (debug, info, warning, error)"
    )
):
    """Subject-tuned AI tutor with saved chats, quizzes and flashcards."""
    setup_logging(log_level)


# ----------------------------------------------------------------------
# Rendering helpers
# ----------------------------------------------------------------------

def _resolve_subject(subject_id: str) -> Subject:
    try:
        return get_subject(subject_id)
    except UnknownSubjectError as e:
        console.print(f"[red]Error: {e}[/red]")
        console.print("[dim]List subjects with: tutorchat subjects[/dim]")
        raise typer.Exit(code=1)


def _format_time(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M")


def _sessions_table(sessions: tuple[ChatSession, ...] | list[ChatSession], active_id: str | None = None) -> Table:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Title")
    table.add_column("Updated", style="dim")
    table.add_column("Messages", justify="right")

    for i, session in enumerate(sessions, 1):
        marker = "[bold green]>[/bold green] " if session.id == active_id else ""
        table.add_row(
            str(i),
            f"{marker}{session.title}",
            _format_time(session.timestamp),
            str(len(session.messages)),
        )
    return table


def _print_message(message: Message) -> None:
    images = sum(1 for p in message.parts if isinstance(p, InlineDataPart))
    attachment = f" [dim]({images} image{'s' if images > 1 else ''})[/dim]" if images else ""

    if message.role == Role.USER:
        console.print(f"[bold yellow]You:[/bold yellow]{attachment} ", end="")
        console.print(message.text, markup=False, highlight=False)
    elif message.interrupted:
        console.print(f"[bold green]Tutor:[/bold green] [red]{message.text}[/red]")
    else:
        console.print("[bold green]Tutor:[/bold green] ", end="")
        console.print(message.text, markup=False, highlight=False)


def _print_transcript(session: ChatSession) -> None:
    console.print(f"\n[bold cyan]{session.title}[/bold cyan] [dim]{_format_time(session.timestamp)}[/dim]\n")
    for message in session.messages:
        _print_message(message)
    console.print()


def _print_chunk(event: ControllerEvent) -> None:
    if event.kind is EventKind.CHUNK and event.chunk:
        console.print(event.chunk, end="", markup=False, highlight=False)


def _run_quiz(items: list[QuizItem]) -> None:
    """Ask each question in turn and report the score."""
    score = 0
    for number, item in enumerate(items, 1):
        console.print(f"\n[bold]Question {number} of {len(items)}[/bold]")
        console.print(item.question, markup=False)
        for i, option in enumerate(item.options, 1):
            console.print(f"  [cyan]{i}.[/cyan] {option}", highlight=False)

        answer = console.input("[bold yellow]Your answer (1-4):[/bold yellow] ").strip()
        chosen = item.options[int(answer) - 1] if answer.isdigit() and 1 <= int(answer) <= len(item.options) else None

        if chosen == item.correct_answer:
            score += 1
            console.print("[green]Correct![/green]")
        else:
            console.print(f"[red]Not quite.[/red] The answer is: [bold]{item.correct_answer}[/bold]")

    console.print(Panel(f"You scored {score} out of {len(items)}", title="Quiz complete", border_style="cyan"))


def _print_flashcards(cards: list[Flashcard]) -> None:
    table = Table(show_header=True, header_style="bold cyan", show_lines=True)
    table.add_column("Term", style="bold", ratio=1)
    table.add_column("Definition", ratio=3)
    for card in cards:
        table.add_row(card.term, card.definition)
    console.print(table)


def _image_part(path: Path) -> InlineDataPart:
    """Read an image file into an inline data part.

    Raises:
        ValueError: If the file does not look like an image
        OSError: If the file cannot be read
    """
    mime_type, _ = mimetypes.guess_type(path.name)
    if not mime_type or not mime_type.startswith("image/"):
        raise ValueError(f"{path.name} is not an image file")
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return InlineDataPart(inline_data=InlineData(data=data, mime_type=mime_type))


def _last_failed_index(messages: tuple[Message, ...]) -> int | None:
    """Index of the newest interrupted model reply that can be retried."""
    for i in range(len(messages) - 1, 0, -1):
        if messages[i].role == Role.MODEL and messages[i].interrupted:
            return i
    return None


def _parse_count(arg: str, default: int) -> int | None:
    if not arg:
        return default
    if arg.isdigit() and 1 <= int(arg) <= MAX_STRUCTURED_ITEMS:
        return int(arg)
    console.print(f"[red]Count must be a number between 1 and {MAX_STRUCTURED_ITEMS}[/red]")
    return None


def _pick_session(controller: ChatController, arg: str) -> ChatSession | None:
    sessions = controller.sessions
    if arg.isdigit() and 1 <= int(arg) <= len(sessions):
        return sessions[int(arg) - 1]
    console.print(f"[red]No chat number {arg or '?'}. Use /list to see your chats.[/red]")
    return None


# ----------------------------------------------------------------------
# Chat REPL
# ----------------------------------------------------------------------

async def _stream_reply(turn) -> None:
    """Await a dispatched turn while the chunk listener prints the reply."""
    console.print("[bold green]Tutor:[/bold green] ", end="")
    session = await turn
    console.print()

    last = session.last_message if session else None
    if last is None:
        console.print("[dim]The reply was discarded.[/dim]")
    elif last.interrupted:
        console.print(f"[red]{last.text}[/red]")
        console.print("[dim]Type /retry to try again.[/dim]")
    console.print()


async def _generate_quiz(controller: ChatController, arg: str, extra_hard: bool) -> None:
    count = _parse_count(arg, DEFAULT_QUIZ_LENGTH)
    if count is None:
        return
    if controller.is_new_session:
        console.print("[yellow]Chat with the tutor first, then ask for a quiz.[/yellow]")
        return

    with console.status("[dim]Generating quiz...[/dim]"):
        items = await controller.generate_quiz(count, extra_hard=extra_hard)
    if not items:
        console.print("[red]Sorry, I couldn't generate a quiz from this conversation. Please try again.[/red]")
        return
    _run_quiz(items)


async def _generate_flashcards(controller: ChatController, arg: str) -> None:
    count = _parse_count(arg, DEFAULT_FLASHCARD_COUNT)
    if count is None:
        return
    if controller.is_new_session:
        console.print("[yellow]Chat with the tutor first, then ask for flashcards.[/yellow]")
        return

    with console.status("[dim]Generating flashcards...[/dim]"):
        cards = await controller.generate_flashcards(count)
    if not cards:
        console.print("[red]Sorry, I couldn't generate flashcards from this conversation. Please try again.[/red]")
        return
    _print_flashcards(cards)


async def _handle_command(controller: ChatController, line: str) -> bool:
    """Run a slash command. Returns False when the REPL should exit."""
    command, _, arg = line.partition(" ")
    command = command.lower()
    arg = arg.strip()

    if command in ("/quit", "/exit", "/q"):
        return False

    elif command == "/help":
        table = Table(show_header=False, box=None)
        table.add_column("Command", style="bold cyan")
        table.add_column("Description")
        for name, description in REPL_COMMANDS:
            table.add_row(name, description)
        console.print(table)

    elif command == "/new":
        controller.start_new_chat()
        console.print("[dim]Started a new chat.[/dim]")

    elif command == "/list":
        if not controller.sessions:
            console.print("[dim]No saved chats yet.[/dim]")
        else:
            console.print(_sessions_table(controller.sessions, controller.active_session_id))

    elif command == "/load":
        session = _pick_session(controller, arg)
        if session:
            controller.load_chat(session.id)
            _print_transcript(session)

    elif command == "/delete":
        session = _pick_session(controller, arg)
        if session:
            await controller.delete_chat(session.id)
            console.print(f"[green]Deleted:[/green] {session.title}")

    elif command == "/clear":
        if typer.confirm("Delete every saved chat for this subject?"):
            await controller.clear_history()
            console.print("[green]Chat history cleared.[/green]")

    elif command == "/retry":
        messages = controller.messages
        index = _last_failed_index(messages)
        if index is None:
            console.print("[dim]Nothing to retry.[/dim]")
        else:
            try:
                await _stream_reply(controller.try_again(messages[index - 1].parts, index))
            except MalformedSessionError as e:
                console.print(f"[red]Error: {e}[/red]")

    elif command in ("/quiz", "/hard"):
        await _generate_quiz(controller, arg, extra_hard=command == "/hard")

    elif command == "/cards":
        await _generate_flashcards(controller, arg)

    elif command == "/image":
        path, _, question = arg.partition(" ")
        if not path:
            console.print("[red]Usage: /image PATH [question][/red]")
            return True
        try:
            parts: list[Part] = [_image_part(Path(path).expanduser())]
        except (OSError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            return True
        if question.strip():
            parts.append(TextPart(text=question.strip()))
        await _stream_reply(controller.send_message(parts))

    else:
        console.print(f"[red]Unknown command {command}. Type /help for commands.[/red]")

    return True


@app.command()
def chat(
    subject_id: str = typer.Argument(..., help="Subject id (see: tutorchat subjects)")
):
    """Interactive tutoring chat with streamed replies."""
    subject = _resolve_subject(subject_id)

    async def _chat():
        service = require_service(console)
        storage = get_storage()

        try:
            await storage.connect()
            controller = ChatController(subject, service, SessionStore(storage))
            unsubscribe = controller.subscribe(_print_chunk)
            await controller.start()

            try:
                console.print(Panel(
                    subject.description or subject.name,
                    title=f"[bold cyan]{subject.name} tutor[/bold cyan]",
                    border_style="cyan",
                ))
                if subject.quick_questions:
                    console.print("[dim]Try asking:[/dim]")
                    for question in subject.quick_questions:
                        console.print(f"[dim]  - {question}[/dim]")
                console.print("[dim]Type /help for commands, /quit to leave[/dim]\n")

                while True:
                    try:
                        user_input = console.input("[bold yellow]You:[/bold yellow] ")
                    except KeyboardInterrupt:
                        console.print("\n[dim]Goodbye![/dim]")
                        break
                    except EOFError:
                        console.print("\n[dim]Goodbye![/dim]")
                        break

                    text = user_input.strip()
                    if not text:
                        continue

                    if text.startswith("/"):
                        if not await _handle_command(controller, text):
                            console.print("[dim]Goodbye![/dim]")
                            break
                        continue

                    await _stream_reply(controller.send_message([TextPart(text=text)]))
            finally:
                unsubscribe()
                await controller.close()

        except (TutorChatError, OSError) as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await storage.disconnect()
            await service.close()

    try:
        asyncio.run(_chat())
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted. The unfinished reply was saved; open it with /load and /retry.[/dim]")


# ----------------------------------------------------------------------
# One-shot commands
# ----------------------------------------------------------------------

@app.command()
def subjects():
    """List the available tutoring subjects."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Id", style="bold")
    table.add_column("Name")
    table.add_column("Description", style="dim")

    for subject in load_subjects():
        table.add_row(subject.id, subject.name, subject.description)

    console.print(table)


@app.command()
def history(
    subject_id: str = typer.Argument(..., help="Subject id"),
    show: int = typer.Option(
        0,
        "--show",
        "-s",
        help="Print the full transcript of chat number N"
    )
):
    """List saved chats for a subject."""
    subject = _resolve_subject(subject_id)

    async def _history():
        storage = get_storage()
        try:
            await storage.connect()
            sessions = await SessionStore(storage).load(subject.id)

            if not sessions:
                console.print(f"[dim]No saved chats for {subject.name}.[/dim]")
                return

            if show:
                if not 1 <= show <= len(sessions):
                    console.print(f"[red]Error: No chat number {show}[/red]")
                    raise typer.Exit(code=1)
                _print_transcript(sessions[show - 1])
                return

            console.print(f"[bold cyan]{subject.name}[/bold cyan] [dim]({len(sessions)} saved)[/dim]")
            console.print(_sessions_table(sessions))
        finally:
            await storage.disconnect()

    asyncio.run(_history())


@app.command()
def clear(
    subject_id: str = typer.Argument(..., help="Subject id"),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation prompt"
    )
):
    """Delete every saved chat for a subject."""
    subject = _resolve_subject(subject_id)

    async def _clear():
        if not yes:
            console.print(f"[yellow]WARNING: This will delete all saved {subject.name} chats![/yellow]")
            confirm = typer.confirm("Are you sure you want to continue?")
            if not confirm:
                console.print("[dim]Aborted.[/dim]")
                return

        storage = get_storage()
        try:
            await storage.connect()
            await SessionStore(storage).clear(subject.id)
            console.print("[green]Chat history cleared.[/green]")
        except (TutorChatError, OSError) as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(code=1)
        finally:
            await storage.disconnect()

    asyncio.run(_clear())


async def _newest_session(subject: Subject) -> ChatSession:
    storage = get_storage()
    try:
        await storage.connect()
        sessions = await SessionStore(storage).load(subject.id)
    finally:
        await storage.disconnect()

    if not sessions:
        console.print(f"[red]Error: No saved {subject.name} chats to study from[/red]")
        raise typer.Exit(code=1)
    return sessions[0]


@app.command()
def quiz(
    subject_id: str = typer.Argument(..., help="Subject id"),
    count: int = typer.Option(
        DEFAULT_QUIZ_LENGTH,
        "--count",
        "-n",
        min=1,
        max=MAX_STRUCTURED_ITEMS,
        help="Number of questions"
    ),
    extra_hard: bool = typer.Option(
        False,
        "--extra-hard",
        help="Ask harder, multi-step questions"
    )
):
    """Take a quiz on your most recent chat."""
    subject = _resolve_subject(subject_id)

    async def _quiz():
        session = await _newest_session(subject)
        service = require_service(console)
        try:
            with console.status("[dim]Generating quiz...[/dim]"):
                items = await service.generate_quiz(subject, session.messages, count, extra_hard=extra_hard)
        finally:
            await service.close()

        if not items:
            console.print("[red]Error: Could not generate a quiz from this conversation[/red]")
            raise typer.Exit(code=1)

        console.print(f"[dim]Quiz on: {session.title}[/dim]")
        _run_quiz(items)

    asyncio.run(_quiz())


@app.command()
def flashcards(
    subject_id: str = typer.Argument(..., help="Subject id"),
    count: int = typer.Option(
        DEFAULT_FLASHCARD_COUNT,
        "--count",
        "-n",
        min=1,
        max=MAX_STRUCTURED_ITEMS,
        help="Number of flashcards"
    )
):
    """Make flashcards from your most recent chat."""
    subject = _resolve_subject(subject_id)

    async def _flashcards():
        session = await _newest_session(subject)
        service = require_service(console)
        try:
            with console.status("[dim]Generating flashcards...[/dim]"):
                cards = await service.generate_flashcards(subject, session.messages, count)
        finally:
            await service.close()

        if not cards:
            console.print("[red]Error: Could not generate flashcards from this conversation[/red]")
            raise typer.Exit(code=1)

        console.print(f"[dim]Flashcards from: {session.title}[/dim]")
        _print_flashcards(cards)

    asyncio.run(_flashcards())


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
    cors: list[str] = typer.Option(
        [],
        "--cors",
        help="Allowed browser origin (repeatable)"
    )
):
    """Serve the chat, quiz and flashcard API over HTTP."""
    import uvicorn

    from ..server import create_app

    service = require_service(console, allow_remote=False)
    console.print(f"[bold cyan]tutorchat API[/bold cyan] on http://{host}:{port}")
    uvicorn.run(create_app(service, allow_origins=cors or None), host=host, port=port)


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
