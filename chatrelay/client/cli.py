import asyncio
import contextlib
import re
from typing import Optional, Tuple

import aiohttp
import typer

app = typer.Typer(help="Terminal client for the chat relay")

HELP_TEXT = ("Commands:\n"
             "  /create-group <name>\n"
             "  /list-groups\n"
             "  /join <groupId>\n"
             "  /leave <groupId>\n"
             "  /history <groupId>\n"
             "  /group <groupId> <message>\n"
             "  /help\n"
             "  /quit")

COMMANDS = {
    "/create-group": re.compile(r"^(.+)$"),
    "/list-groups": None,
    "/join": re.compile(r"^(\S+)$"),
    "/leave": re.compile(r"^(\S+)$"),
    "/history": re.compile(r"^(\S+)$"),
    "/group": re.compile(r"^(\S+)\s+(.+)$"),
    "/help": None,
    "/quit": None,
}


def parse_command(line: str) -> Tuple[Optional[str], tuple]:
    """Split an input line into a command and its arguments.

    Returns:
        tuple: (command, args). command is None when the line is not a
        known command or its arguments do not match.
    """
    line = line.strip()
    if line == "help":
        line = "/help"
    name, _, rest = line.partition(" ")
    if name not in COMMANDS:
        return None, ()
    pattern = COMMANDS[name]
    rest = rest.strip()
    if pattern is None:
        return name, ()
    m = pattern.match(rest)
    if not m:
        return None, ()
    return name, m.groups()


def format_event(event: str, data: dict) -> str:
    """Render a server-pushed event as one console line."""
    if event == "message":
        return f"[GROUP {data.get('groupId')}] {data.get('senderUsername')}: {data.get('messageText')}"
    if event == "userJoinedGroup":
        return f"[JOIN {data.get('groupId')}] {data.get('username')} ({data.get('userId')})"
    if event == "userLeftGroup":
        return f"[LEAVE {data.get('groupId')}] {data.get('userId')}"
    if event in ("offer", "answer", "ice-candidate"):
        return f"[SIGNAL {data.get('groupId')}] {event} from {data.get('senderId')}"
    if event == "error":
        return f"[error] {data.get('code')} on {data.get('event')} {data.get('groupId')}"
    return f"[IN] {event} {data}"


async def read_body(resp):
    """Decode a response body, whatever content type the server sent.

    Non-JSON bodies (for example a plain-text 500) come back as an
    {"error": ...} object so callers only deal with one shape.
    """
    try:
        return await resp.json(content_type=None)
    except ValueError:
        return {"error": f"{resp.status} {resp.reason}"}


async def _run(name: str, password: str, host: str, port: int):
    """Main client loop handling connection and chat operations.

    Logs in over HTTP (registering the name on first use), opens the
    WebSocket, announces the identity and then reads commands from stdin
    while a reader task prints incoming events.
    """
    base = f"http://{host}:{port}"
    if not name:
        name = input("Enter your username: ").strip()
    if not password:
        password = input("Enter your password: ")

    async with aiohttp.ClientSession() as session:
        async with session.post(f"{base}/login", json={"username": name, "password": password}) as resp:
            body = await read_body(resp)
            if resp.status != 200:
                print(f"Login failed: {body.get('error')}")
                return
        user_id = body["userId"]
        print(f"Logged in as {name} ({user_id})")

        async with session.ws_connect(f"{base}/ws") as ws:
            await ws.send_json({"event": "login", "data": {"userId": user_id}})

            async def reader():
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        frame = msg.json()
                        print(format_event(frame.get("event"), frame.get("data") or {}))
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        print(f"[error] connection lost: {ws.exception()}")
                        return

            reader_task = asyncio.create_task(reader())
            loop = asyncio.get_running_loop()
            try:
                while not reader_task.done():
                    line = await loop.run_in_executor(None, input, "")
                    command, args = parse_command(line)

                    if command == "/quit":
                        break

                    if command == "/help":
                        print(HELP_TEXT)
                        continue

                    if command == "/create-group":
                        async with session.post(f"{base}/groups",
                                                json={"groupName": args[0], "userId": user_id}) as resp:
                            body = await read_body(resp)
                        if resp.status == 201:
                            print(f"[group] Created group {body['groupName']} ({body['groupId']})")
                            await ws.send_json({"event": "joinGroup", "data": {"groupId": body["groupId"]}})
                        else:
                            print(f"[error] Failed to create group: {body.get('error')}")
                        continue

                    if command == "/list-groups":
                        async with session.get(f"{base}/groups") as resp:
                            groups = await read_body(resp)
                        if resp.status != 200:
                            print(f"[error] Failed to list groups: {groups.get('error')}")
                            continue
                        if not groups:
                            print("[list-groups] No groups found")
                        for g in groups:
                            members = ",".join(g["memberUsernames"])
                            print(f" - {g['groupName']} ({g['groupId']}) members={members}")
                        continue

                    if command == "/history":
                        async with session.get(f"{base}/history/{args[0]}") as resp:
                            messages = await read_body(resp)
                        if resp.status != 200:
                            print(f"[error] Failed to load history: {messages.get('error')}")
                            continue
                        for m in messages:
                            print(f"[{m['timestamp']}] {m['senderUsername']}: {m['messageText']}")
                        continue

                    if command == "/join":
                        await ws.send_json({"event": "joinGroup", "data": {"groupId": args[0]}})
                        continue

                    if command == "/leave":
                        await ws.send_json({"event": "leaveGroup", "data": {"groupId": args[0]}})
                        continue

                    if command == "/group":
                        await ws.send_json({"event": "chatMessage",
                                            "data": {"groupId": args[0], "messageText": args[1]}})
                        continue

                    print('Type "/help" for commands.')
            finally:
                reader_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reader_task


@app.callback()
def main():
    """Terminal client for the chat relay."""


@app.command("run")
def run_cmd(
    name: str = "",
    password: str = "",
    host: str = "127.0.0.1",
    port: int = 8080,
):
    """
    Run the chat client.

    Args:
        name: Username to log in with (registered on first use)
        password: Password for the username
        host: Server hostname
        port: Server port
    """
    asyncio.run(_run(name, password, host, port))


if __name__ == "__main__":
    app()
